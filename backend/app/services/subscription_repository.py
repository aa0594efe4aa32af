"""Subscription repository - reads and writes of entitlement state

The transition handlers are the only callers that mutate User/Subscription rows,
and they do it exclusively through these functions. Nothing here commits except
the webhook event log, which must survive a rolled-back handler.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.audit_log import AuditLogEntry
from app.models.enums import SubscriptionStatus, SubscriptionTier
from app.models.subscription import Subscription
from app.models.subscription_plan import SubscriptionPlan
from app.models.user import User
from app.models.webhook_event import WebhookEvent
from app.schemas.subscriptions import ActiveSubscriptionInfo, EntitlementSummary

logger = logging.getLogger(__name__)

DEFAULT_PLAN_FEATURES = ["all_content", "offline_access", "no_ads"]

# (monthly, yearly) list prices used when a tier's plan is created on first sight
DEFAULT_PLAN_PRICES = {
    SubscriptionTier.FREE: (Decimal("0"), Decimal("0")),
    SubscriptionTier.BASIC: (Decimal("4.99"), Decimal("49.99")),
    SubscriptionTier.PREMIUM: (Decimal("9.99"), Decimal("99.99")),
    SubscriptionTier.FAMILY: (Decimal("14.99"), Decimal("149.99")),
}


# ============================================================================
# USERS
# ============================================================================

def find_user_by_id_or_correlation_id(
    candidate_ids: Union[str, Sequence[str]],
    db: Session
) -> Optional[User]:
    """Find a user whose id or stored provider correlation id matches.

    Candidates are tried in order and the first match wins.
    """
    if isinstance(candidate_ids, str):
        candidate_ids = [candidate_ids]

    for candidate in candidate_ids:
        if not candidate:
            continue
        user = db.query(User).filter(
            or_(User.id == candidate, User.revenuecat_user_id == candidate)
        ).first()
        if user:
            return user
    return None


def lock_user(user_id: str, db: Session) -> Optional[User]:
    """Re-read the user row FOR UPDATE inside the current transaction"""
    return db.query(User).filter(User.id == user_id).with_for_update().populate_existing().first()


def update_user_entitlement(
    user: User,
    tier: Union[SubscriptionTier, str],
    expires_at: Optional[datetime],
    db: Session,
    correlation_id: Optional[str] = None
) -> User:
    """Overwrite the cached tier and expiry together"""
    user.subscription_tier = SubscriptionTier(tier).value
    user.subscription_expires_at = expires_at
    if correlation_id and not user.revenuecat_user_id and correlation_id != user.id:
        user.revenuecat_user_id = correlation_id
    db.flush()
    return user


# ============================================================================
# PLANS
# ============================================================================

def find_subscription_plan_by_tier(tier: Union[SubscriptionTier, str], db: Session) -> Optional[SubscriptionPlan]:
    return db.query(SubscriptionPlan).filter(SubscriptionPlan.tier == SubscriptionTier(tier).value).first()


def upsert_subscription_plan_by_tier(tier: Union[SubscriptionTier, str], db: Session) -> SubscriptionPlan:
    """Return the plan for a tier, creating it with catalog defaults if missing.

    The insert runs in a savepoint, so losing a race with another worker
    creating the same tier leaves the caller's transaction intact.
    """
    tier = SubscriptionTier(tier)
    plan = find_subscription_plan_by_tier(tier, db)
    if plan:
        return plan

    price_monthly, price_yearly = DEFAULT_PLAN_PRICES[tier]
    plan = SubscriptionPlan(
        name=f"{tier.value.title()} Plan",
        description=f"{tier.value} subscription plan",
        tier=tier.value,
        price_monthly=price_monthly,
        price_yearly=price_yearly,
        currency=settings.DEFAULT_PLAN_CURRENCY,
        features=["free_content"] if tier == SubscriptionTier.FREE else list(DEFAULT_PLAN_FEATURES),
        is_active=True,
    )
    try:
        with db.begin_nested():
            db.add(plan)
            db.flush()
    except IntegrityError:
        # Another worker created it first
        return db.query(SubscriptionPlan).filter(SubscriptionPlan.tier == tier.value).one()
    logger.info(f"Created missing subscription plan for tier {tier.value}")
    return plan


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

def find_active_subscriptions_for_user(
    user_id: str,
    db: Session,
    statuses: Iterable[str] = (SubscriptionStatus.ACTIVE.value,)
) -> List[Subscription]:
    """Subscriptions of a user in any of the given statuses (ACTIVE by default)"""
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status.in_(list(statuses))
    ).order_by(Subscription.created_at).all()


def find_subscription_by_original_transaction_id(
    user_id: str,
    original_transaction_id: str,
    db: Session
) -> Optional[Subscription]:
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.original_transaction_id == original_transaction_id
    ).first()


def create_subscription(db: Session, **fields: Any) -> Subscription:
    subscription = Subscription(**fields)
    db.add(subscription)
    db.flush()
    return subscription


def update_subscription(subscription: Subscription, db: Session, **fields: Any) -> Subscription:
    for key, value in fields.items():
        if not hasattr(Subscription, key):
            raise AttributeError(f"Subscription has no column {key!r}")
        setattr(subscription, key, value)
    db.flush()
    return subscription


def get_entitlement_summary(user_id: str, db: Session) -> Optional[EntitlementSummary]:
    """Cached tier/expiry plus the currently ACTIVE subscription"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None

    active = find_active_subscriptions_for_user(user_id, db)
    return EntitlementSummary(
        user_id=user.id,
        subscription_tier=user.subscription_tier,
        subscription_expires_at=user.subscription_expires_at,
        active_subscription=ActiveSubscriptionInfo.model_validate(active[-1]) if active else None,
    )


# ============================================================================
# AUDIT LOG
# ============================================================================

def append_audit_log_entry(
    user_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    metadata: Optional[Dict[str, Any]],
    db: Session
) -> AuditLogEntry:
    entry = AuditLogEntry(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entry_metadata=metadata or {},
    )
    db.add(entry)
    db.flush()
    return entry


# ============================================================================
# WEBHOOK EVENT LOG
# ============================================================================

def log_webhook_event(
    event_id: str,
    event_type: str,
    app_user_id: Optional[str],
    payload: dict,
    db: Session
) -> WebhookEvent:
    """Record a delivery; redeliveries bump delivery_count on the existing row"""
    webhook_event = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
    if webhook_event:
        webhook_event.delivery_count += 1
        webhook_event.payload = payload
        db.commit()
        return webhook_event

    webhook_event = WebhookEvent(
        event_id=event_id,
        event_type=event_type[:100],
        app_user_id=app_user_id,
        payload=payload,
        processed=False,
    )
    db.add(webhook_event)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent delivery of the same event inserted first
        db.rollback()
        webhook_event = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).one()
        webhook_event.delivery_count += 1
        db.commit()
    db.refresh(webhook_event)
    return webhook_event


def mark_webhook_event_processed(
    event_id: str,
    outcome: str,
    db: Session,
    error_message: Optional[str] = None
) -> None:
    webhook_event = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
    if webhook_event:
        webhook_event.processed = error_message is None
        webhook_event.outcome = outcome
        webhook_event.error_message = error_message
        webhook_event.processed_at = datetime.now(timezone.utc)
        db.commit()


def get_failed_webhook_events(db: Session, limit: Optional[int] = None) -> List[WebhookEvent]:
    """Events whose last dispatch ended in an error, oldest first"""
    query = db.query(WebhookEvent).filter(WebhookEvent.outcome == "error").order_by(WebhookEvent.received_at)
    if limit:
        query = query.limit(limit)
    return query.all()
