"""Audit sink - append-only trace of processed webhooks"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLogEntry
from app.schemas.webhooks import SubscriptionEvent
from app.services.subscription_repository import append_audit_log_entry

logger = logging.getLogger(__name__)

WEBHOOK_AUDIT_ACTION = "REVENUECAT_WEBHOOK"
WEBHOOK_AUDIT_ENTITY_TYPE = "subscription"


def record(
    user_id: str,
    action: str,
    entity_id: str,
    metadata: Optional[Dict[str, Any]],
    db: Session,
    entity_type: str = WEBHOOK_AUDIT_ENTITY_TYPE
) -> AuditLogEntry:
    """Write one audit entry and commit it.

    Raises whatever the database raises after rolling back, so the caller
    never acknowledges a webhook that left no trace without knowing it.
    """
    try:
        entry = append_audit_log_entry(user_id, action, entity_type, entity_id, metadata, db)
        db.commit()
        return entry
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to write audit entry {action} for user {user_id} ({entity_id}): {e}")
        raise


def record_webhook(user_id: str, event: SubscriptionEvent, db: Session) -> AuditLogEntry:
    """Audit entry for one webhook call, keyed by the provider transaction id"""
    return record(
        user_id,
        WEBHOOK_AUDIT_ACTION,
        event.transaction_id or "unknown",
        {
            "event_type": event.event_type,
            "product_id": event.product_id,
            "store": event.store,
            "environment": event.environment,
            "price": event.price,
            "currency": event.currency,
        },
        db,
    )
