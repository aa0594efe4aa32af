"""Subscription provider webhook route"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidWebhookPayload
from app.core.metrics import webhook_events_counter
from app.core.security import verify_webhook_authorization
from app.db.session import get_db
from app.services.event_dispatcher import dispatch_event, parse_envelope

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/subscription-events", dependencies=[Depends(verify_webhook_authorization)])
async def subscription_events_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle subscription lifecycle events from the billing provider

    Answers 200 for every envelope that carries an event object, whatever the
    business outcome, because the provider retries anything else. Only a
    missing event object gets a 400, so a broken integration is flagged
    instead of retried forever.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    try:
        event = parse_envelope(body)
    except InvalidWebhookPayload as e:
        logger.warning(f"Invalid webhook payload: {e}")
        webhook_events_counter.labels(event_type="unknown", outcome="invalid").inc()
        return JSONResponse(status_code=400, content={"error": "Invalid webhook payload"})

    logger.info(
        f"Subscription webhook received - type: {event.get('type')}, "
        f"app_user_id: {event.get('app_user_id')}, product_id: {event.get('product_id')}, "
        f"environment: {event.get('environment')}"
    )

    try:
        return await run_in_threadpool(dispatch_event, event, db)
    except Exception as e:
        # Always acknowledge
        logger.error(f"Unexpected error processing subscription webhook: {e}", exc_info=True)
        return {"success": False, "error": "Internal error"}
