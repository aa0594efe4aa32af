"""OpenTelemetry tracing for the webhook pipeline

Counters live in Prometheus (app.core.metrics); OTLP carries traces and log
records only. Every dispatched webhook gets a `webhook.dispatch` span whose
attributes identify the event, the resolved user and the outcome.
"""
import logging
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from app.core.config import settings

logger = logging.getLogger(__name__)

TRACER_NAME = "entitlements.webhooks"

ATTR_EVENT_TYPE = "entitlements.event_type"
ATTR_EVENT_ID = "entitlements.event_id"
ATTR_USER_ID = "entitlements.user_id"
ATTR_OUTCOME = "entitlements.outcome"
ATTR_ACTION = "entitlements.action"


def initialize_otel() -> bool:
    """Export traces and log records to OTEL_EXPORTER_OTLP_ENDPOINT, if set"""
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    resource = Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "deployment.environment": settings.OTEL_ENVIRONMENT
    })
    try:
        trace_provider = TracerProvider(resource=resource)
        trace_provider.add_span_processor(BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))
        trace.set_tracer_provider(trace_provider)
    except Exception as e:
        logger.warning(f"Failed to initialize OpenTelemetry tracing: {e}")
        return False

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

        logger_provider = LoggerProvider(resource=resource)
        set_logger_provider(logger_provider)
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(
            OTLPLogExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))
        logging.getLogger().addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider))
    except Exception as e:
        # Traces still flow; only log shipping is lost
        logger.warning(f"Failed to setup OTEL logging: {e}")

    return True


@contextmanager
def dispatch_span(event_type: str, event_id: str = None):
    """Span around one webhook dispatch; yields it so callers can add the outcome"""
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span("webhook.dispatch") as span:
        span.set_attribute(ATTR_EVENT_TYPE, event_type)
        if event_id:
            span.set_attribute(ATTR_EVENT_ID, event_id)
        yield span


def instrument_fastapi(app):
    """Trace requests, leaving out health checks and metric scrapes"""
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


def instrument_sqlalchemy(engine):
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument SQLAlchemy: {e}")
