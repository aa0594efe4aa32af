"""Webhook authorization and API access logging"""
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Header, HTTPException, Request

from app.core.config import settings

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")


def get_client_ip(request: Request) -> str:
    """Best-effort client address, honoring X-Forwarded-For"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


def verify_webhook_authorization(
    request: Request,
    authorization: Optional[str] = Header(None)
) -> None:
    """Dependency: check the shared secret the provider sends in the Authorization header.

    Runs before the body is read, so an unauthorized caller never reaches the dispatcher.
    """
    expected = settings.REVENUECAT_WEBHOOK_AUTH
    if not expected:
        if settings.ENVIRONMENT == "production":
            security_logger.error("Webhook rejected - REVENUECAT_WEBHOOK_AUTH is not configured in production")
            raise HTTPException(401, "Webhook authorization not configured")
        security_logger.warning("Webhook accepted without authorization check (secret not configured)")
        return

    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        security_logger.warning(
            f"Webhook authorization failed - IP: {get_client_ip(request)}, Path: {request.url.path}"
        )
        raise HTTPException(401, "Invalid webhook authorization")


def log_api_access(
    request: Request,
    status_code: int = 200,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
