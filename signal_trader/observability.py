"""
Observability — OpenTelemetry tracing + Prometheus metrics for the trader.

Provides:
- A span per processed message (`trace_stage`)
- Counters for messages, orders and market binds
- A latency histogram for message processing
- Prometheus scraping utilities for the /metrics endpoint
"""

import time
from contextlib import contextmanager
from typing import Generator

import structlog
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

logger = structlog.get_logger(__name__)

# ── OpenTelemetry Setup ──────────────────────────────────────────────

_tracer: trace.Tracer | None = None


def setup_tracing(service_name: str | None = None, *, console: bool = True) -> trace.Tracer:
    """
    Install a tracer provider for the process.

    Args:
        service_name: Name of the service (appears in traces). Defaults to APP_NAME.
        console: Export finished spans to stdout.
    """
    global _tracer

    from signal_trader.version import APP_NAME, VERSION

    resource = Resource.create(
        {"service.name": service_name or APP_NAME, "service.version": VERSION}
    )
    provider = TracerProvider(resource=resource)
    if console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(__name__)
    logger.info("otel_tracing_initialized", service=service_name or APP_NAME)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Tracer from the installed provider (a no-op one when tracing is off)."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(__name__)
    return _tracer


@contextmanager
def trace_stage(stage_name: str, **attributes) -> Generator:
    """
    Context manager to trace one processing stage.

    Usage:
        with trace_stage("message", channel=target.channel):
            await self._process(raw)
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        f"trader.{stage_name}",
        attributes={
            "trader.stage": stage_name,
            **{k: str(v) for k, v in attributes.items()},
        },
    ) as span:
        start = time.monotonic()
        try:
            yield span
            span.set_attribute("trader.status", "success")
        except Exception as e:
            span.set_attribute("trader.status", "error")
            span.set_attribute("trader.error", str(e))
            span.record_exception(e)
            raise
        finally:
            latency = time.monotonic() - start
            span.set_attribute("trader.latency_ms", round(latency * 1000))
            MESSAGE_LATENCY.labels(stage=stage_name).observe(latency)


# ── Trader Metrics ───────────────────────────────────────────────────

MESSAGES = Counter(
    "messages_total",
    "Event-source messages by processing result",
    ["result"],
    namespace="signal_trader",
)

ORDERS = Counter(
    "orders_total",
    "FOK orders by side and status",
    ["side", "status"],
    namespace="signal_trader",
)

MARKET_BINDS = Counter(
    "market_binds_total",
    "Successful market bindings by request source",
    ["source"],
    namespace="signal_trader",
)

MESSAGE_LATENCY = Histogram(
    "stage_latency_seconds",
    "Latency per traced stage",
    ["stage"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5],
    namespace="signal_trader",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type for Prometheus scraping."""
    return CONTENT_TYPE_LATEST
