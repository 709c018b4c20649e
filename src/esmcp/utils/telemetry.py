"""Tracing for tool calls, built on the OpenTelemetry API.

Only ``opentelemetry-api`` is required at runtime. Until
:func:`configure_telemetry` installs an SDK provider, every tracer handed out
here is a no-op, so instrumented code pays nothing when tracing is off.

Usage::

    from esmcp.utils.telemetry import get_tracer, record_error, tool_call_attributes

    _tracer = get_tracer(__name__)

    attributes = tool_call_attributes("search", session.id, request.id)
    with _tracer.start_as_current_span("mcp.tools.call", attributes=attributes) as span:
        try:
            ...
        except UpstreamError as exc:
            record_error(span, exc.kind, exc.status)
            raise

The SDK and exporters come with the ``otel`` extra: ``pip install esmcp[otel]``.
"""

from __future__ import annotations

import sys
from typing import Any

from opentelemetry import trace

from esmcp import __version__

# Span attribute keys
ATTR_SESSION_ID = "esmcp.session.id"
ATTR_REQUEST_ID = "esmcp.request.id"
ATTR_METHOD = "esmcp.method"
ATTR_TOOL_NAME = "esmcp.tool.name"
ATTR_ERROR_KIND = "esmcp.error.kind"
ATTR_UPSTREAM_STATUS = "esmcp.upstream.status"

_INSTRUMENTATION_NAME = "esmcp"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return a tracer that follows whatever provider is installed globally."""
    return trace.get_tracer(name or _INSTRUMENTATION_NAME, __version__)


def tool_call_attributes(tool: str, session_id: str, request_id: int | str) -> dict[str, Any]:
    """Attributes identifying one ``tools/call`` and the request it answers."""
    return {
        ATTR_METHOD: "tools/call",
        ATTR_TOOL_NAME: tool,
        ATTR_SESSION_ID: session_id,
        # Request ids may be integers or strings; spans always carry the string form.
        ATTR_REQUEST_ID: str(request_id),
    }


def record_error(span: trace.Span, kind: str, status: int | None = None) -> None:
    """Tag *span* with an error kind and, for upstream failures, the HTTP status."""
    span.set_attribute(ATTR_ERROR_KIND, kind)
    if status is not None:
        span.set_attribute(ATTR_UPSTREAM_STATUS, status)
    span.set_status(trace.Status(trace.StatusCode.ERROR, kind))


def configure_telemetry(
    *,
    service_name: str = "esmcp",
    export_to_console: bool = True,
    otlp_endpoint: str | None = None,
) -> None:
    """Install an SDK tracer provider with the requested exporters.

    Console spans are written to stderr: stdout belongs to the stdio
    transport. OTLP export uses gRPC to *otlp_endpoint*.

    Raises:
        ImportError: If ``opentelemetry-sdk`` (or, for OTLP,
            ``opentelemetry-exporter-otlp``) is not installed.
    """
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports]
            BatchSpanProcessor,
            SimpleSpanProcessor,
        )
    except ImportError as exc:
        msg = (
            "opentelemetry-sdk is required for tracing. "
            "Install it with: pip install esmcp[otel]"
        )
        raise ImportError(msg) from exc

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__})
    )
    if export_to_console:
        _add_console_exporter(provider, SimpleSpanProcessor)
    if otlp_endpoint:
        _add_otlp_exporter(provider, BatchSpanProcessor, otlp_endpoint)

    trace.set_tracer_provider(provider)


def _add_console_exporter(provider: Any, processor_cls: Any) -> None:
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter  # pyright: ignore[reportMissingImports]

    provider.add_span_processor(processor_cls(ConsoleSpanExporter(out=sys.stderr)))


def _add_otlp_exporter(provider: Any, processor_cls: Any, endpoint: str) -> None:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # pyright: ignore[reportMissingImports]
            OTLPSpanExporter,
        )
    except ImportError as exc:
        msg = (
            "opentelemetry-exporter-otlp is required for OTLP export. "
            "Install it with: pip install esmcp[otel]"
        )
        raise ImportError(msg) from exc

    provider.add_span_processor(processor_cls(OTLPSpanExporter(endpoint=endpoint)))
