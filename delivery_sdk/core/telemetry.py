"""
Telemetry configuration (Metrics & Tracing).
Sets up Prometheus counters and OpenTelemetry tracing for the SDK.
"""
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, start_http_server

from delivery_sdk.config import Settings, get_settings

tracer = trace.get_tracer("delivery_sdk")

RESPONSES = Counter(
    "delivery_sdk_responses_total",
    "Client responses by where the insertions were produced",
    ["operation", "execution_server"],
)

REMOTE_FAILURES = Counter(
    "delivery_sdk_remote_failures_total",
    "Failed remote calls by service and failure kind",
    ["service", "kind"],
)


def setup_telemetry(settings: Optional[Settings] = None) -> Optional[TracerProvider]:
    """
    Setup Observability (Metrics & Tracing).

    1. Prometheus metrics on PROMETHEUS_PORT
    2. OpenTelemetry tracing via OTLP

    Returns the installed TracerProvider, if any.
    """
    settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # 1. Prometheus Metrics
    # -------------------------------------------------------------------------
    if settings.ENABLE_PROMETHEUS and settings.PROMETHEUS_PORT:
        start_http_server(settings.PROMETHEUS_PORT)

    # -------------------------------------------------------------------------
    # 2. OpenTelemetry Tracing
    # -------------------------------------------------------------------------
    if not settings.ENABLE_OTEL:
        return None

    resource = Resource.create(attributes={
        "service.name": settings.APP_NAME,
        "service.version": settings.APP_VERSION,
        "deployment.environment": "production" if not settings.DEBUG else "development",
    })

    provider = TracerProvider(resource=resource)

    # OTLP Exporter, default endpoint is localhost:4317
    otlp_exporter = OTLPSpanExporter()
    processor = BatchSpanProcessor(otlp_exporter)
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    return provider
