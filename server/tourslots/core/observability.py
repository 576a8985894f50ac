"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "tourslots-api"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Business metrics
RESERVATIONS_CREATED = Counter(
    'reservations_created_total',
    'Pending reservations placed at checkout',
    ['tour_id'],
    registry=REGISTRY
)

RESERVATIONS_CONFIRMED = Counter(
    'reservations_confirmed_total',
    'Reservations confirmed by a payment webhook',
    registry=REGISTRY
)

RESERVATIONS_EXPIRED = Counter(
    'reservations_expired_total',
    'Pending reservations released by the expiry sweep',
    registry=REGISTRY
)

RESERVATIONS_CANCELLED = Counter(
    'reservations_cancelled_total',
    'Reservations cancelled, by reason',
    ['reason'],
    registry=REGISTRY
)

CAPACITY_REJECTIONS = Counter(
    'reservation_capacity_rejections_total',
    'Checkout selections rejected because the slot was full',
    ['tour_id'],
    registry=REGISTRY
)

SLOT_LOCK_CONTENTION = Counter(
    'reservation_slot_lock_contention_total',
    'Slot lock acquisitions that timed out',
    registry=REGISTRY
)

CHECKOUT_FAILURES = Counter(
    'checkout_failures_total',
    'Checkouts that failed, by error code',
    ['code'],
    registry=REGISTRY
)

PAYMENT_WEBHOOKS = Counter(
    'payment_webhooks_total',
    'Payment webhook deliveries, by event type and outcome',
    ['event_type', 'outcome'],
    registry=REGISTRY
)

PENDING_RESERVATIONS = Gauge(
    'reservations_pending',
    'Pending reservations still inside their hold window',
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())

    if settings.otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument the async engine's underlying sync engine with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for reservation engine metrics."""

    @staticmethod
    def record_request(method: str, endpoint: str, status_code: int, duration_seconds: float):
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration_seconds)

    @staticmethod
    def record_reservation_created(tour_id: str):
        RESERVATIONS_CREATED.labels(tour_id=tour_id).inc()

    @staticmethod
    def record_reservations_confirmed(count: int):
        if count:
            RESERVATIONS_CONFIRMED.inc(count)

    @staticmethod
    def record_reservations_expired(count: int):
        if count:
            RESERVATIONS_EXPIRED.inc(count)

    @staticmethod
    def record_reservations_cancelled(reason: str, count: int = 1):
        if count:
            RESERVATIONS_CANCELLED.labels(reason=reason).inc(count)

    @staticmethod
    def record_capacity_rejection(tour_id: str):
        CAPACITY_REJECTIONS.labels(tour_id=tour_id).inc()

    @staticmethod
    def record_lock_contention():
        SLOT_LOCK_CONTENTION.inc()

    @staticmethod
    def record_checkout_failure(code: str):
        CHECKOUT_FAILURES.labels(code=code).inc()

    @staticmethod
    def record_webhook(event_type: str, outcome: str):
        PAYMENT_WEBHOOKS.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def set_pending_reservations(count: int):
        PENDING_RESERVATIONS.set(count)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


def get_logger(name: str):
    """Get a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
