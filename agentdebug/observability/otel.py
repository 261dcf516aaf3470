"""OpenTelemetry + Prometheus fallback wiring for agentdebug.

Both backends are optional and disabled by default. The Prometheus scrape
endpoint is started only once OpenTelemetry itself initialized, and only when
``AGENTDEBUG_PROM_PORT`` is positive. Every ``record_*`` helper is a no-op
until ``initialize`` has set one of them up.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from agentdebug import config

logger = logging.getLogger("agentdebug.observability")

# name -> (kind, unit, description, prometheus label names)
_METRICS: dict[str, tuple[str, str, str, tuple[str, ...]]] = {
    "agentdebug_normalizations_total": ("counter", "1", "Session normalizations by source kind", ("source", "result")),
    "agentdebug_normalization_latency_ms": ("histogram", "ms", "Latency of format adapters", ("source", "result")),
    "agentdebug_format_errors_total": ("counter", "1", "Inputs rejected as unparseable", ("source",)),
    "agentdebug_tool_calls_total": ("counter", "1", "Tool call outcomes in normalized sessions", ("tool", "status")),
    "agentdebug_tool_duration_ms": ("histogram", "ms", "Observed tool execution durations", ("tool",)),
    "agentdebug_tokens_total": ("counter", "1", "Token totals by model", ("model", "direction")),
}


class _State:
    def __init__(self) -> None:
        self.initialized = False
        self.tracer: Any | None = None
        self.trace_provider: Any | None = None
        self.meter_provider: Any | None = None
        self.instrumentor: Any | None = None
        self.otel: dict[str, Any] = {}
        self.prom: dict[str, Any] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.otel) or bool(self.prom)


_state = _State()


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip().rstrip("/")
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return f"{endpoint}{signal_path}"


def _label_value(value: Any) -> str:
    return str(value or "").strip() or "unknown"


def _setup_otel(app: FastAPI | None) -> bool:
    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return False

    service_name = config.OTEL_SERVICE_NAME or "agentdebug"
    resource = Resource.create({"service.name": service_name, "service.namespace": "agentdebug"})

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("agentdebug")

    for name, (kind, unit, description, _labels) in _METRICS.items():
        factory = meter.create_counter if kind == "counter" else meter.create_histogram
        _state.otel[name] = factory(name, unit=unit, description=description)

    _state.tracer = trace.get_tracer("agentdebug")
    _state.trace_provider = trace_provider
    _state.meter_provider = meter_provider
    _state.instrumentor = FastAPIInstrumentor()
    if app:
        _state.instrumentor.instrument_app(app)
    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)
    return True


def _setup_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server
    except ImportError as exc:
        logger.warning("Prometheus fallback unavailable: %s", exc)
        return

    try:
        start_http_server(config.PROM_PORT)
    except OSError as exc:
        logger.warning("Prometheus fallback not started: %s", exc)
        return
    for name, (kind, _unit, description, labels) in _METRICS.items():
        factory = Counter if kind == "counter" else Histogram
        _state.prom[name] = factory(name, description, list(labels))
    logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    if _state.initialized:
        if app and _state.instrumentor:
            _state.instrumentor.instrument_app(app)
        return
    _state.initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (AGENTDEBUG_OTEL_ENABLED=false)")
        return
    if _setup_otel(app) and config.PROM_PORT > 0:
        _setup_prometheus()


def shutdown(app: FastAPI | None = None) -> None:
    if not _state.initialized:
        return
    steps = (
        ("FastAPI uninstrumentation", lambda: _state.instrumentor.uninstrument_app(app) if app and _state.instrumentor else None),
        ("Meter provider shutdown", lambda: _state.meter_provider.shutdown() if _state.meter_provider else None),
        ("Trace provider shutdown", lambda: _state.trace_provider.shutdown() if _state.trace_provider else None),
    )
    for label, step in steps:
        try:
            step()
        except Exception:  # noqa: BLE001
            logger.debug("%s failed", label, exc_info=True)
    _state.otel.clear()
    _state.tracer = None


def _emit(name: str, amount: float, **labels: Any) -> None:
    if not _state.enabled:
        return
    values = {key: _label_value(value) for key, value in labels.items()}
    kind = _METRICS[name][0]
    instrument = _state.otel.get(name)
    if instrument is not None:
        if kind == "counter":
            instrument.add(amount, values)
        else:
            instrument.record(amount, values)
    prom = _state.prom.get(name)
    if prom is not None:
        bound = prom.labels(**values)
        if kind == "counter":
            bound.inc(amount)
        else:
            bound.observe(amount)


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if _state.tracer is None:
        yield None
        return
    with _state.tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_normalization(source: str, result: str, duration_ms: float) -> None:
    _emit("agentdebug_normalizations_total", 1, source=source, result=result)
    _emit("agentdebug_normalization_latency_ms", max(0.0, float(duration_ms)), source=source, result=result)


def record_format_error(source: str) -> None:
    _emit("agentdebug_format_errors_total", 1, source=source)


def record_tool_result(tool: str, status: str, *, count: int = 1, duration_ms: float = 0.0) -> None:
    count = max(0, int(count))
    if count == 0:
        return
    _emit("agentdebug_tool_calls_total", count, tool=tool, status=status)
    if duration_ms > 0:
        _emit("agentdebug_tool_duration_ms", float(duration_ms), tool=tool)


def record_tokens(*, model: str, token_input: int, token_output: int) -> None:
    for direction, amount in (("input", token_input), ("output", token_output)):
        amount = max(0, int(amount))
        if amount > 0:
            _emit("agentdebug_tokens_total", amount, model=model, direction=direction)
