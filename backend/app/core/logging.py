"""Logging configuration for the application"""
import logging

from app.core.config import settings

# uvicorn.access duplicates the api_access logger; sqlalchemy.engine echoes every statement at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "alembic.runtime.migration", "opentelemetry")


def setup_logging():
    """Configure the root logger once per process.

    Lines carry the service name so webhook logs from several deployments can
    share one sink.
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=f'%(asctime)s - {settings.OTEL_SERVICE_NAME} - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
