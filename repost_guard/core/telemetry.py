from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from repost_guard.core.config import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
# Comma-separated path patterns that get no server span.
UNTRACED_PATHS = "healthz"

_default_record_factory = logging.getLogRecordFactory()
_correlated = False
_httpx_instrumentor = HTTPXClientInstrumentor()


@dataclass(slots=True)
class TelemetryRuntime:
    provider: TracerProvider | None
    exporting: bool = False

    @property
    def enabled(self) -> bool:
        return self.provider is not None


def configure_logging() -> None:
    install_log_correlation()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def instrument_api(app: FastAPI) -> None:
    """Attach server spans to ``app``.

    Runs at import, before the ASGI middleware stack is built. Spans go through the global
    tracer provider, so they stay no-ops until ``setup_telemetry`` installs one.
    """
    if getattr(app.state, "otel_instrumented", False):
        return
    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_PATHS)
    app.state.otel_instrumented = True


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            DEPLOYMENT_ENVIRONMENT: settings.environment,
            "repost.threshold_seconds": settings.repost_threshold.total_seconds(),
            "repost.retention_window_seconds": settings.retention_window.total_seconds(),
            "repost.oracle_failure_mode": settings.oracle_failure_mode,
        }
    )


def setup_telemetry(app: FastAPI, settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        runtime = TelemetryRuntime(provider=None)
        app.state.telemetry = runtime
        return runtime

    if settings.otel_log_correlation:
        install_log_correlation()

    provider = TracerProvider(
        resource=build_resource(settings),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    endpoint = otlp_endpoint(settings)
    if endpoint:
        headers = parse_otlp_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=headers or None)))
    else:
        logger.info("no OTLP endpoint configured; repost-guard spans are not exported")

    trace.set_tracer_provider(provider)
    _httpx_instrumentor.instrument(tracer_provider=provider)
    runtime = TelemetryRuntime(provider=provider, exporting=bool(endpoint))
    app.state.telemetry = runtime
    return runtime


def shutdown_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    app.state.telemetry = None
    if runtime.provider is None:
        return
    _httpx_instrumentor.uninstrument()
    runtime.provider.force_flush()
    runtime.provider.shutdown()


def otlp_endpoint(settings: Settings) -> str | None:
    return (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value``; entries without ``=`` or with an empty key are dropped."""
    headers: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, separator, value = item.partition("=")
        if separator and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def install_log_correlation() -> None:
    global _correlated
    if _correlated:
        return

    def correlated_record(*args: object, **kwargs: object) -> logging.LogRecord:
        record = _default_record_factory(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id if context.is_valid else 0, "032x")
        record.span_id = format(context.span_id if context.is_valid else 0, "016x")
        return record

    logging.setLogRecordFactory(correlated_record)
    _correlated = True
