"""Transition handlers - one per class of subscription lifecycle event

Each handler mutates entitlement state for a single, already locked user and
returns a short action name. Handlers never commit; the dispatcher wraps each
call in one unit of work so a failure leaves nothing half applied.

A lineage (original transaction id) that exists for the user but is no longer
live (CANCELLED or EXPIRED) makes Cancellation, Expiration, BillingIssue and
ProductChange events stale: they are ignored rather than applied to whatever
other lineage happens to be ACTIVE now. An activation for an EXPIRED lineage
is applied only if it extends the period the lineage last held.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.enums import LIVE_STATUSES, PaymentProvider, SubscriptionStatus, SubscriptionTier
from app.models.subscription import Subscription
from app.models.user import User
from app.schemas.webhooks import SubscriptionEvent
from app.services.subscription_repository import (
    create_subscription,
    find_active_subscriptions_for_user,
    find_subscription_by_original_transaction_id,
    update_subscription,
    update_user_entitlement,
    upsert_subscription_plan_by_tier,
)
from app.services.tier_mapper import resolve_interval

logger = logging.getLogger(__name__)

SUPERSEDED_REASON = "superseded"
DEFAULT_CANCEL_REASON = "User cancelled subscription"

STORE_PROVIDERS = {
    "APP_STORE": PaymentProvider.APPLE.value,
    "PLAY_STORE": PaymentProvider.GOOGLE.value,
    "STRIPE": PaymentProvider.STRIPE.value,
    "PROMOTIONAL": PaymentProvider.PROMOTIONAL.value,
}


def provider_for_store(store: Optional[str]) -> str:
    return STORE_PROVIDERS.get((store or "").upper(), PaymentProvider.STRIPE.value)


def provider_snapshot(event: SubscriptionEvent) -> dict:
    """Last raw event snapshot stored on the subscription"""
    return {
        "transaction_id": event.transaction_id,
        "product_id": event.product_id,
        "price": event.price,
        "currency": event.currency,
        "environment": event.environment,
        "store": event.store,
        "period_type": event.period_type,
        "last_event_type": event.event_type,
    }


def _lineage_record(user: User, event: SubscriptionEvent, db: Session) -> Optional[Subscription]:
    if not event.lineage_id:
        return None
    return find_subscription_by_original_transaction_id(user.id, event.lineage_id, db)


def _is_stale(record: Optional[Subscription]) -> bool:
    return record is not None and record.status not in LIVE_STATUSES


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _extends_period(record: Subscription, event: SubscriptionEvent) -> bool:
    """True when the event carries a later period end than the record holds"""
    expires_at = event.expires_at
    if expires_at is None:
        return False
    current_end = _as_utc(record.current_period_end)
    return current_end is None or expires_at > current_end


def _target_active_subscription(user: User, event: SubscriptionEvent, db: Session) -> Optional[Subscription]:
    """The event's own lineage if known, else the user's ACTIVE subscription; None unless ACTIVE"""
    target = _lineage_record(user, event, db)
    if target is None:
        active = find_active_subscriptions_for_user(user.id, db)
        target = active[0] if active else None
    if target is None or target.status != SubscriptionStatus.ACTIVE.value:
        return None
    return target


def handle_activation(user: User, event: SubscriptionEvent, tier: SubscriptionTier, db: Session) -> str:
    """INITIAL_PURCHASE, RENEWAL, NON_RENEWING_PURCHASE, UNCANCELLATION

    Supersedes every other ACTIVE subscription of the user, then upserts the
    event's lineage as ACTIVE and writes the tier/expiry through to the user.
    """
    lineage_id = event.lineage_id
    if not lineage_id:
        raise ValueError(f"{event.event_type} event has no original_transaction_id")

    now = datetime.now(timezone.utc)
    existing = find_subscription_by_original_transaction_id(user.id, lineage_id, db)
    if existing is not None and existing.status == SubscriptionStatus.EXPIRED.value and not _extends_period(existing, event):
        # Redelivery of an event older than the expiration that ended this lineage
        logger.info(f"Ignoring stale {event.event_type} for expired lineage {lineage_id} of user {user.id}")
        return "stale"

    plan = upsert_subscription_plan_by_tier(tier, db)
    for other in find_active_subscriptions_for_user(user.id, db):
        if existing is not None and other.id == existing.id:
            continue
        update_subscription(
            other, db,
            status=SubscriptionStatus.CANCELLED.value,
            cancelled_at=now,
            cancel_reason=SUPERSEDED_REASON,
        )
        logger.info(f"Superseded subscription {other.id} ({other.original_transaction_id}) for user {user.id}")

    auto_renew = event.event_type != "NON_RENEWING_PURCHASE"
    fields = dict(
        plan_id=plan.id,
        status=SubscriptionStatus.ACTIVE.value,
        interval=resolve_interval(event.product_id),
        provider=provider_for_store(event.store),
        current_period_end=event.expires_at,
        auto_renew=auto_renew,
        cancelled_at=None,
        cancel_reason=None,
        provider_data=provider_snapshot(event),
    )

    if existing is not None:
        update_subscription(existing, db, **fields)
        action = "renewed"
    else:
        create_subscription(
            db,
            user_id=user.id,
            original_transaction_id=lineage_id,
            current_period_start=now,
            **fields
        )
        action = "activated"

    update_user_entitlement(user, tier, event.expires_at, db, correlation_id=event.app_user_id)
    logger.info(f"Subscription {action} for user {user.id}: {SubscriptionTier(tier).value} ({lineage_id})")
    return action


def handle_cancellation(user: User, event: SubscriptionEvent, tier: Optional[SubscriptionTier], db: Session) -> str:
    """Turns off auto-renew; the subscription stays ACTIVE until its period ends"""
    if _is_stale(_lineage_record(user, event, db)):
        logger.info(f"Ignoring stale cancellation for user {user.id} ({event.lineage_id})")
        return "stale"

    subscription = _target_active_subscription(user, event, db)
    if subscription is None:
        logger.info(f"No active subscription to cancel for user {user.id}")
        return "noop"

    update_subscription(
        subscription, db,
        auto_renew=False,
        cancelled_at=datetime.now(timezone.utc),
        cancel_reason=event.cancel_reason or DEFAULT_CANCEL_REASON,
    )
    logger.info(f"Subscription cancelled for user {user.id} ({subscription.original_transaction_id})")
    return "cancelled"


def handle_expiration(user: User, event: SubscriptionEvent, tier: Optional[SubscriptionTier], db: Session) -> str:
    """Expires every live subscription and resets the user to the base tier"""
    if _is_stale(_lineage_record(user, event, db)):
        logger.info(f"Ignoring stale expiration for user {user.id} ({event.lineage_id})")
        return "stale"

    for subscription in find_active_subscriptions_for_user(user.id, db, statuses=LIVE_STATUSES):
        fields = {"status": SubscriptionStatus.EXPIRED.value}
        own_lineage = event.lineage_id is None or subscription.original_transaction_id == event.lineage_id
        if own_lineage and _extends_period(subscription, event):
            # Keep the latest known period end so older activations stay stale
            fields["current_period_end"] = event.expires_at
        update_subscription(subscription, db, **fields)

    update_user_entitlement(user, settings.BASE_TIER, None, db)
    logger.info(f"Subscription expired for user {user.id}")
    return "expired"


def handle_billing_issue(user: User, event: SubscriptionEvent, tier: Optional[SubscriptionTier], db: Session) -> str:
    """Marks the ACTIVE subscription PAST_DUE without touching entitlement"""
    if _is_stale(_lineage_record(user, event, db)):
        logger.info(f"Ignoring stale billing issue for user {user.id} ({event.lineage_id})")
        return "stale"

    subscription = _target_active_subscription(user, event, db)
    if subscription is None:
        logger.info(f"No active subscription to mark past due for user {user.id}")
        return "noop"

    update_subscription(subscription, db, status=SubscriptionStatus.PAST_DUE.value)
    logger.info(f"Billing issue for user {user.id} ({subscription.original_transaction_id})")
    return "past_due"


def handle_product_change(user: User, event: SubscriptionEvent, tier: SubscriptionTier, db: Session) -> str:
    """Moves the ACTIVE subscription to the new tier's plan in place"""
    if _is_stale(_lineage_record(user, event, db)):
        logger.info(f"Ignoring stale product change for user {user.id} ({event.lineage_id})")
        return "stale"

    plan = upsert_subscription_plan_by_tier(tier, db)
    subscription = _target_active_subscription(user, event, db)
    if subscription is not None:
        update_subscription(
            subscription, db,
            plan_id=plan.id,
            current_period_end=event.expires_at,
            provider_data=provider_snapshot(event),
        )
    else:
        logger.warning(f"Product change for user {user.id} without an active subscription")

    update_user_entitlement(user, tier, event.expires_at, db)
    logger.info(f"Product changed for user {user.id} to {SubscriptionTier(tier).value}")
    return "product_changed"
