from __future__ import annotations

import time
from typing import Any, Dict, Optional

from .config import env_flag
from .core import Connector
from .types import Mode, Operation, RetryPredicate


def _otel_enabled(explicit: Optional[bool]) -> bool:
    if explicit is not None:
        return explicit
    return env_flag("DBOP_OTEL_ENABLED")


def _metrics_enabled() -> bool:
    return env_flag("DBOP_OTEL_METRICS_ENABLED")


# --- Metrics plumbing (lazy / optional) --------------------------------------

try:
    from opentelemetry import metrics as _otel_metrics  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover - OTEL not installed
    _otel_metrics = None  # type: ignore[assignment]

_instruments: Dict[str, Any] = {}


def _ensure_metrics() -> bool:
    """Create the instruments once; False when metrics are off or unavailable."""
    if _instruments:
        return True
    if not _metrics_enabled() or _otel_metrics is None:
        return False

    meter = _otel_metrics.get_meter(__name__)
    _instruments["operations"] = meter.create_counter(
        "dbop_operations_total",
        description="Outer connector calls, by outcome.",
    )
    _instruments["failed_attempts"] = meter.create_counter(
        "dbop_failed_attempts_total",
        description="Failed attempts recorded on the exception stack.",
    )
    _instruments["duration"] = meter.create_histogram(
        "dbop_operation_duration_seconds",
        description="Latency of outer connector calls, retries included.",
        unit="s",
    )
    return True


def _record_metrics(connector: Connector, attrs: Dict[str, Any], outcome: str, started: float) -> None:
    labels = {**attrs, "dbop.outcome": outcome}
    _instruments["operations"].add(1, attributes=labels)
    if connector.attempt_count:
        _instruments["failed_attempts"].add(connector.attempt_count, attributes=labels)
    _instruments["duration"].record(time.perf_counter() - started, attributes=labels)


# --- Traced execution ---------------------------------------------------------


def execute_traced_optional(
    connector: Connector,
    operation: Operation,
    *,
    mode: Optional[Mode | str] = None,
    transactional: bool = False,
    args: tuple = (),
    kwargs: Optional[Dict[str, Any]] = None,
    retry_predicate: Optional[RetryPredicate] = None,
    otel_enabled: Optional[bool] = None,  # None -> read env DBOP_OTEL_ENABLED
    span_name: str = "dbop.operation",
    db_system: Optional[str] = None,
    db_name: Optional[str] = None,
    db_statement: Optional[str] = None,  # redact upstream if needed
) -> Any:
    """
    connector.execute() inside a span when OpenTelemetry is installed and
    enabled, plain connector.execute() otherwise.

    Every entry of the call's exception stack becomes an exception event on
    the span, so retried failures stay visible even when the call succeeds.
    With DBOP_OTEL_METRICS_ENABLED=1 it also feeds dbop_operations_total,
    dbop_failed_attempts_total and dbop_operation_duration_seconds.
    """
    call = dict(
        mode=mode,
        transactional=transactional,
        args=args,
        kwargs=kwargs,
        retry_predicate=retry_predicate,
    )
    if not _otel_enabled(otel_enabled):
        return connector.execute(operation, **call)

    try:
        from opentelemetry import trace
        from opentelemetry.trace import SpanKind, Status, StatusCode
    except ImportError:
        return connector.execute(operation, **call)

    tracer = trace.get_tracer(__name__)
    metrics_active = _ensure_metrics()
    effective_mode = Mode.parse(mode).value if mode is not None else connector.mode.value

    attrs = {
        "db.system": db_system,
        "db.name": db_name,
        "db.statement": db_statement,
        "dbop.mode": effective_mode,
        "dbop.transactional": transactional,
        "dbop.max_attempts": connector.max_attempts,
    }
    metric_attrs = {
        "db.system": db_system or "unknown",
        "db.name": db_name or "unknown",
        "dbop.mode": effective_mode,
        "dbop.transactional": transactional,
    }

    started = time.perf_counter()
    with tracer.start_as_current_span(span_name, kind=SpanKind.CLIENT) as span:
        for key, value in attrs.items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            result = connector.execute(operation, **call)
        except Exception as exc:
            _annotate(span, connector, "error")
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            if metrics_active:
                _record_metrics(connector, metric_attrs, "error", started)
            raise
        _annotate(span, connector, "success")
        if metrics_active:
            _record_metrics(connector, metric_attrs, "success", started)
        return result


def _annotate(span: Any, connector: Connector, outcome: str) -> None:
    span.set_attribute("dbop.attempts", connector.attempt_count)
    span.set_attribute("dbop.outcome", outcome)
    for number, failure in enumerate(connector.exception_stack, start=1):
        span.record_exception(failure, attributes={"dbop.attempt.number": number})
