"""
Logging and tracing setup for the PMS client.

Every log line is a JSON object carrying the service name, the request id of
the gateway call in flight and, once `ENABLE_TELEMETRY` is on, the active
trace and span ids. Spans are exported over OTLP/HTTP.
"""

from __future__ import annotations

import logging
import os
from contextvars import ContextVar, Token
from uuid import uuid4

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from pythonjsonlogger import jsonlogger

CORRELATION_ID_HEADER = "x-request-id"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(service_name)s %(request_id)s %(trace_id)s %(span_id)s"

RequestContextToken = Token

_request_id: ContextVar[str | None] = ContextVar("pms_request_id", default=None)
_state = {"logging": False, "httpx": False}


def setup_telemetry(service_name: str, *, level: int = logging.INFO) -> None:
    """
    Install the JSON log handler and, if `ENABLE_TELEMETRY` is set, tracing.

    Safe to call more than once; only the first call configures logging.
    `OTEL_SERVICE_NAME` overrides `service_name`.
    """

    traces_enabled = os.getenv("ENABLE_TELEMETRY", "false").lower() in {"1", "true", "yes", "on"}
    service_label = os.getenv("OTEL_SERVICE_NAME", service_name)

    if not _state["logging"]:
        handler = logging.StreamHandler()
        handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
        handler.addFilter(_ContextLogFilter(service_label, traces_enabled))
        logging.basicConfig(level=level, handlers=[handler], force=True)
        _state["logging"] = True

    if traces_enabled:
        _install_tracer_provider(service_label)
        if not _state["httpx"]:
            HTTPXClientInstrumentor().instrument()
            _state["httpx"] = True
        LoggingInstrumentor().instrument(set_logging_format=False)


def new_request_id() -> str:
    """Mint a correlation id for an outbound gateway call."""

    return os.getenv("REQUEST_ID_PREFIX", "") + str(uuid4())


def current_request_id() -> str | None:
    return _request_id.get()


def ensure_request_id(request_id: str | None = None) -> str:
    """Prefer the explicit id, then the bound one, else mint a fresh id."""

    return request_id or _request_id.get() or new_request_id()


def bind_request_context(request_id: str | None) -> RequestContextToken:
    return _request_id.set(request_id)


def reset_request_context(token: RequestContextToken | None) -> None:
    if token is not None:
        _request_id.reset(token)


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def _install_tracer_provider(service_name: str) -> None:
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)


def _span_ids() -> tuple[str | None, str | None]:
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


class _ContextLogFilter(logging.Filter):
    """Stamps service, request and span ids onto every record."""

    def __init__(self, service_name: str, traces_enabled: bool) -> None:
        super().__init__()
        self._service_name = service_name
        self._traces_enabled = traces_enabled

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self._service_name
        record.request_id = _request_id.get()
        record.trace_id, record.span_id = _span_ids() if self._traces_enabled else (None, None)
        return True
