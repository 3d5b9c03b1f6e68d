from __future__ import annotations

import os
from typing import Any, Dict

# dbop-connector works without opentelemetry; these helpers then do nothing.
try:
    from opentelemetry import metrics, trace
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    _OTEL_AVAILABLE = True
except ImportError:  # pragma: no cover - graceful fallback when OTEL is missing
    _OTEL_AVAILABLE = False

_providers: Dict[str, Any] = {}


def _resource(service_name: str) -> "Resource":
    return Resource.create(
        {
            "service.name": service_name,
            "service.version": os.getenv("DBOP_SERVICE_VERSION", "dev"),
        }
    )


def _exporter(kind: str, exporter: str) -> Any:
    """OTLP exporter for 'traces' or 'metrics' over 'http' (default) or 'grpc'."""
    grpc = exporter.lower() == "grpc"
    if kind == "traces":
        if grpc:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        else:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        return OTLPSpanExporter()
    if grpc:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    else:
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
    return OTLPMetricExporter()


def init_tracer(service_name: str = "dbop-connector", exporter: str = "http") -> None:
    """Install a global TracerProvider exporting over OTLP. Idempotent."""
    if not _OTEL_AVAILABLE or "traces" in _providers:
        return
    provider = TracerProvider(resource=_resource(service_name))
    provider.add_span_processor(BatchSpanProcessor(_exporter("traces", exporter)))
    trace.set_tracer_provider(provider)
    _providers["traces"] = provider


def init_metrics(service_name: str = "dbop-connector", exporter: str = "http") -> None:
    """Install a global MeterProvider exporting over OTLP. Idempotent."""
    if not _OTEL_AVAILABLE or "metrics" in _providers:
        return
    reader = PeriodicExportingMetricReader(_exporter("metrics", exporter))
    provider = MeterProvider(resource=_resource(service_name), metric_readers=[reader])
    metrics.set_meter_provider(provider)
    _providers["metrics"] = provider


def shutdown() -> None:
    """Flush and drop whatever providers init_* installed."""
    while _providers:
        _, provider = _providers.popitem()
        provider.shutdown()
