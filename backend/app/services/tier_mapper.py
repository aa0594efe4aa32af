"""Tier mapper - external product/entitlement identifiers to internal tiers

Provider product catalogs are edited outside this codebase and drift. When a
product id is not in the table the mapper falls back to a name heuristic and
finally to PREMIUM, so an unknown SKU grants some access instead of none.
Every fallback is logged and counted in `entitlements_tier_fallback_total`.
"""
import logging
from typing import Iterable, Mapping, Optional

from app.core.config import settings
from app.core.metrics import tier_fallback_counter
from app.models.enums import BillingInterval, SubscriptionTier

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_TIERS: Mapping[str, SubscriptionTier] = {
    # App Store products
    "com.yogaapp.premium.monthly": SubscriptionTier.PREMIUM,
    "com.yogaapp.premium.yearly": SubscriptionTier.PREMIUM,
    "com.yogaapp.family.monthly": SubscriptionTier.FAMILY,
    "com.yogaapp.family.yearly": SubscriptionTier.FAMILY,
    # Play Store products
    "premium_monthly": SubscriptionTier.PREMIUM,
    "premium_yearly": SubscriptionTier.PREMIUM,
    "family_monthly": SubscriptionTier.FAMILY,
    "family_yearly": SubscriptionTier.FAMILY,
    # Entitlement identifiers
    "yoga-app Pro": SubscriptionTier.PREMIUM,
    "pro": SubscriptionTier.PREMIUM,
}

DEFAULT_TIER = SubscriptionTier.PREMIUM


class TierMapper:
    """Resolves a tier from a product id and its entitlement ids.

    Order, first match wins: exact product id, exact entitlement id,
    substring heuristic on the product id, then DEFAULT_TIER.
    """

    def __init__(self, product_tiers: Optional[Mapping[str, SubscriptionTier]] = None):
        self.product_tiers = dict(DEFAULT_PRODUCT_TIERS if product_tiers is None else product_tiers)

    def resolve_tier(self, product_id: str, entitlement_ids: Iterable[str] = ()) -> SubscriptionTier:
        product_id = product_id or ""

        if product_id in self.product_tiers:
            return self.product_tiers[product_id]

        for entitlement_id in entitlement_ids or ():
            if entitlement_id in self.product_tiers:
                return self.product_tiers[entitlement_id]

        lowered = product_id.lower()
        if "premium" in lowered or "pro" in lowered:
            self._record_fallback("heuristic", product_id, SubscriptionTier.PREMIUM)
            return SubscriptionTier.PREMIUM
        if "family" in lowered:
            self._record_fallback("heuristic", product_id, SubscriptionTier.FAMILY)
            return SubscriptionTier.FAMILY

        self._record_fallback("default", product_id, DEFAULT_TIER)
        return DEFAULT_TIER

    @staticmethod
    def _record_fallback(reason: str, product_id: str, tier: SubscriptionTier):
        tier_fallback_counter.labels(reason=reason).inc()
        logger.warning(
            f"Product '{product_id}' is not in the tier catalog - granted {tier.value} via {reason} fallback"
        )


def resolve_interval(product_id: str) -> str:
    """Billing interval inferred from the product id"""
    lowered = (product_id or "").lower()
    if "yearly" in lowered or "annual" in lowered:
        return BillingInterval.YEARLY.value
    return BillingInterval.MONTHLY.value


def get_tier_mapper() -> TierMapper:
    """Mapper built from the default table plus PRODUCT_TIER_OVERRIDES"""
    product_tiers = dict(DEFAULT_PRODUCT_TIERS)
    for product_id, tier in settings.PRODUCT_TIER_OVERRIDES.items():
        try:
            product_tiers[product_id] = SubscriptionTier(tier)
        except ValueError:
            logger.error(f"Ignoring PRODUCT_TIER_OVERRIDES entry {product_id!r}: unknown tier {tier!r}")
    return TierMapper(product_tiers)
