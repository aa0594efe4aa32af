"""Event dispatcher - routes provider webhook events to transition handlers"""
import hashlib
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidWebhookPayload
from app.core.metrics import webhook_events_counter
from app.core.otel import ATTR_ACTION, ATTR_OUTCOME, ATTR_USER_ID, dispatch_span
from app.db.redis import user_lock
from app.db.session import unit_of_work
from app.schemas.webhooks import SubscriptionEvent
from app.services import audit_service
from app.services.subscription_repository import (
    find_user_by_id_or_correlation_id,
    lock_user,
    log_webhook_event,
    mark_webhook_event_processed,
)
from app.services.tier_mapper import TierMapper, get_tier_mapper
from app.services.transition_handlers import (
    handle_activation,
    handle_billing_issue,
    handle_cancellation,
    handle_expiration,
    handle_product_change,
)

logger = logging.getLogger(__name__)

EVENT_HANDLERS: Dict[str, Callable] = {
    "INITIAL_PURCHASE": handle_activation,
    "RENEWAL": handle_activation,
    "NON_RENEWING_PURCHASE": handle_activation,
    "UNCANCELLATION": handle_activation,
    "CANCELLATION": handle_cancellation,
    "EXPIRATION": handle_expiration,
    "BILLING_ISSUE": handle_billing_issue,
    "PRODUCT_CHANGE": handle_product_change,
}

# Events whose handler needs the product's tier
TIER_EVENTS = {"INITIAL_PURCHASE", "RENEWAL", "NON_RENEWING_PURCHASE", "UNCANCELLATION", "PRODUCT_CHANGE"}


def metric_event_type(event_type: str) -> str:
    """Label value for metrics; unhandled types share one bucket"""
    return event_type if event_type in EVENT_HANDLERS else "other"


def parse_envelope(body: Any) -> Dict[str, Any]:
    """Return the envelope's event object.

    Raises:
        InvalidWebhookPayload: If the body is not an object or has no event object
    """
    if not isinstance(body, dict):
        raise InvalidWebhookPayload("Webhook body is not a JSON object")
    event = body.get("event")
    if not isinstance(event, dict):
        raise InvalidWebhookPayload("Webhook body has no event object")
    return event


def event_id_for(raw_event: Dict[str, Any]) -> str:
    """Provider event id, or one derived from transaction id, type and timestamp.

    Events carrying neither a transaction id nor a timestamp fall back to a
    hash of the whole body.
    """
    if raw_event.get("id"):
        return str(raw_event["id"])

    transaction_id = raw_event.get("transaction_id")
    timestamp = raw_event.get("event_timestamp_ms") or raw_event.get("purchased_at_ms")
    if transaction_id or timestamp:
        key = f"{transaction_id}|{raw_event.get('type')}|{timestamp}"
    else:
        key = json.dumps(raw_event, sort_keys=True, default=str)
    return "sha256:" + hashlib.sha256(key.encode()).hexdigest()


def dispatch_event(
    raw_event: Dict[str, Any],
    db: Session,
    tier_mapper: Optional[TierMapper] = None
) -> Dict[str, Any]:
    """Apply one webhook event and describe the outcome.

    Business failures never raise: a malformed event, an unknown user, an
    unhandled event type and a failing handler all come back as a result dict
    so the caller can acknowledge the delivery. Each of them is stored in the
    webhook event log with its outcome. Only failures to write that log
    propagate.

    Args:
        raw_event: The envelope's `event` object
        db: Database session
        tier_mapper: Product to tier mapping (defaults to the configured one)

    Returns:
        Dict with `success` and, depending on the outcome, `action`, `message`
        or `error`
    """
    raw_type = str(raw_event.get("type") or "unknown")
    event_id = event_id_for(raw_event)
    with dispatch_span(raw_type, event_id) as span:
        outcome, result = _dispatch(raw_event, raw_type, event_id, db, tier_mapper, span)
        span.set_attribute(ATTR_OUTCOME, outcome)
        webhook_events_counter.labels(event_type=metric_event_type(raw_type), outcome=outcome).inc()
        return result


def _dispatch(
    raw_event: Dict[str, Any],
    raw_type: str,
    event_id: str,
    db: Session,
    tier_mapper: Optional[TierMapper],
    span
) -> Tuple[str, Dict[str, Any]]:
    try:
        event = SubscriptionEvent.model_validate(raw_event)
    except ValidationError as e:
        logger.error(f"Rejected malformed {raw_type} event {event_id}: {e}")
        app_user_id = raw_event.get("app_user_id")
        log_webhook_event(event_id, raw_type, str(app_user_id) if app_user_id is not None else None, raw_event, db)
        mark_webhook_event_processed(event_id, "invalid", db, error_message=str(e))
        return "invalid", {"success": False, "error": "Invalid event"}

    log_webhook_event(event_id, event.event_type, event.app_user_id, raw_event, db)

    user = find_user_by_id_or_correlation_id(event.candidate_user_ids(), db)
    if not user:
        logger.info(f"User not found for app_user_id {event.app_user_id} ({event.event_type}, event {event_id})")
        mark_webhook_event_processed(event_id, "user_not_found", db)
        return "user_not_found", {"success": False, "message": "User not found", "app_user_id": event.app_user_id}

    user_id = user.id
    span.set_attribute(ATTR_USER_ID, user_id)
    handler = EVENT_HANDLERS.get(event.event_type)
    try:
        if handler is None:
            logger.warning(f"Unhandled subscription event type {event.event_type} for user {user_id} (event {event_id})")
            action = "ignored"
            outcome = "ignored"
        else:
            tier = None
            if event.event_type in TIER_EVENTS:
                tier = (tier_mapper or get_tier_mapper()).resolve_tier(event.product_id, event.entitlement_ids)

            with user_lock(user_id):
                with unit_of_work(db):
                    locked_user = lock_user(user_id, db)
                    if locked_user is None:
                        raise LookupError(f"User {user_id} disappeared before {event.event_type} was applied")
                    action = handler(locked_user, event, tier, db)
            outcome = "processed"

        audit_service.record_webhook(user_id, event, db)
    except Exception as e:
        logger.error(
            f"Error processing {event.event_type} event {event_id} for user {user_id} "
            f"(app_user_id={event.app_user_id}, original_transaction_id={event.original_transaction_id}): {e}",
            exc_info=True
        )
        span.record_exception(e)
        span.set_status(Status(StatusCode.ERROR, str(e)))
        db.rollback()
        mark_webhook_event_processed(event_id, "error", db, error_message=str(e))
        return "error", {"success": False, "error": "Internal error"}

    mark_webhook_event_processed(event_id, outcome, db)
    span.set_attribute(ATTR_ACTION, action)
    logger.info(f"Processed {event.event_type} event {event_id} for user {user_id}: {action}")
    return outcome, {"success": True, "action": action}
