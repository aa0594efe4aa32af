"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.middleware import access_log_middleware, global_exception_handler
from app.core.otel import initialize_otel, instrument_fastapi, instrument_sqlalchemy
from app.db.session import engine, init_db
from app.db.redis import get_redis_client
from app.models import Base  # Import all models to register with Base.metadata

from app.api import webhooks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        logger.info(f"OpenTelemetry tracing enabled, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    instrument_sqlalchemy(engine)

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Entitlements Backend",
    description="Subscription state reconciliation for billing provider webhooks",
    version="1.0.0",
    lifespan=lifespan
)

instrument_fastapi(app)

app.middleware("http")(access_log_middleware)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(webhooks.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
