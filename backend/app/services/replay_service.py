"""Replay of stored webhook events that failed to apply"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.webhook_event import WebhookEvent
from app.services.event_dispatcher import dispatch_event
from app.services.subscription_repository import get_failed_webhook_events
from app.services.tier_mapper import TierMapper

logger = logging.getLogger(__name__)


def replay_webhook_events(
    db: Session,
    event_id: Optional[str] = None,
    limit: Optional[int] = None,
    tier_mapper: Optional[TierMapper] = None
) -> List[Dict[str, Any]]:
    """Re-dispatch stored events.

    With `event_id`, replays that one event whatever its last outcome;
    otherwise every event whose last outcome was `error`, oldest first.
    Handlers are idempotent, so replaying an event that did apply is harmless.

    Returns:
        One dict per replayed event with its id, app user id and dispatch result
    """
    if event_id:
        events = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).all()
        if not events:
            raise ValueError(f"Webhook event {event_id} not found")
    else:
        events = get_failed_webhook_events(db, limit=limit)

    results = []
    for webhook_event in events:
        stored_id = webhook_event.event_id
        app_user_id = webhook_event.app_user_id
        payload = dict(webhook_event.payload)
        # Keep the stored id so the replay updates the same log row
        payload.setdefault("id", stored_id)
        result = dispatch_event(payload, db, tier_mapper=tier_mapper)
        logger.info(f"Replayed webhook event {stored_id}: {result}")
        results.append({"event_id": stored_id, "app_user_id": app_user_id, "result": result})
    return results
