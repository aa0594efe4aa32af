"""Middleware configuration for FastAPI application"""
import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.security import log_api_access

logger = logging.getLogger(__name__)


async def access_log_middleware(request: Request, call_next):
    """Log every request with its status and latency"""
    started = time.perf_counter()
    status_code = 500
    error = None

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = str(e)
        raise
    finally:
        log_api_access(request, status_code, (time.perf_counter() - started) * 1000, error)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
