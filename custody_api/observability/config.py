"""
OpenTelemetry Configuration

Sets up distributed tracing and logging for the agreement change workflow.
"""

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

from ..config import Settings

SERVICE_NAME = 'custody-agreement-changes'


def setup_observability(settings: Optional[Settings] = None, otlp_endpoint: Optional[str] = None) -> bool:
    """
    Initialize OpenTelemetry tracing and logging.

    Args:
        settings: Runtime settings; read from the environment when omitted
        otlp_endpoint: OTLP collector endpoint; spans go to the console only when omitted

    Returns:
        True if a tracer provider was installed
    """
    settings = settings or Settings.from_env()
    environment = settings.environment

    # Configure structured logging
    setup_structured_logging(environment)

    if not settings.otel_enabled:
        # Disable tracing by not setting up a tracer provider
        return False

    # Environment-specific sampling
    if environment == 'production':
        sampler = TraceIdRatioBased(0.1)  # 10% sampling in production
    elif environment == 'staging':
        sampler = TraceIdRatioBased(0.5)  # 50% sampling in staging
    else:
        sampler = TraceIdRatioBased(1.0)  # 100% sampling in development

    # Configure resource attributes
    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": settings.service_version,
        "deployment.environment": environment
    })

    tracer_provider = TracerProvider(
        sampler=sampler,
        resource=resource
    )

    if otlp_endpoint:
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint), max_export_batch_size=512)
        )

    if environment == 'development':
        # Development: Console output
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(tracer_provider)
    return True


class TraceContextFilter(logging.Filter):
    """Adds the current trace and span IDs to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = "-"
            record.span_id = "-"
        return True


def setup_structured_logging(environment: str):
    """Configure logging with trace correlation."""
    log_level = {
        'production': logging.WARNING,
        'staging': logging.INFO,
        'development': logging.INFO
    }.get(environment, logging.INFO)

    handler = logging.StreamHandler()
    handler.addFilter(TraceContextFilter())
    handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s trace=%(trace_id)s span=%(span_id)s %(message)s'
    ))

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    # Environment-specific logger configuration
    if environment == 'production':
        # Production: Reduce noise, focus on errors and business events
        logging.getLogger('pymongo').setLevel(logging.WARNING)
        logging.getLogger('custody_api.services.lifecycle').setLevel(logging.INFO)

    elif environment == 'development':
        # Development: Verbose logging for debugging
        logging.getLogger('custody_api').setLevel(logging.DEBUG)
