"""Tests for OpenTelemetry tracing helpers."""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry import trace

from esmcp.utils.telemetry import (
    ATTR_ERROR_KIND,
    ATTR_METHOD,
    ATTR_REQUEST_ID,
    ATTR_SESSION_ID,
    ATTR_TOOL_NAME,
    ATTR_UPSTREAM_STATUS,
    configure_telemetry,
    get_tracer,
    record_error,
    tool_call_attributes,
)


class TestGetTracer:
    def test_returns_tracer(self) -> None:
        assert isinstance(get_tracer("test.module"), trace.Tracer)
        assert isinstance(get_tracer(), trace.Tracer)

    def test_noop_span(self) -> None:
        """Without the SDK configured, spans accept attributes silently."""
        with get_tracer("test.noop").start_as_current_span("mcp.tools.call") as span:
            span.set_attribute(ATTR_TOOL_NAME, "search")


class TestConfigureTelemetry:
    def test_raises_without_sdk(self) -> None:
        with patch.dict("sys.modules", {"opentelemetry.sdk.resources": None}):
            with pytest.raises(ImportError, match=r"esmcp\[otel\]"):
                configure_telemetry()

    def test_console_exporter_writes_to_stderr(self) -> None:
        try:
            from opentelemetry.sdk.trace import TracerProvider  # noqa: F401
        except ImportError:
            pytest.skip("opentelemetry-sdk not installed")

        with (
            patch("opentelemetry.sdk.trace.export.ConsoleSpanExporter") as mock_exporter,
            patch("esmcp.utils.telemetry.trace.set_tracer_provider") as mock_set,
        ):
            configure_telemetry(service_name="test-svc", export_to_console=True)

        mock_exporter.assert_called_once_with(out=sys.stderr)
        provider = mock_set.call_args[0][0]
        assert provider.resource.attributes["service.name"] == "test-svc"
        assert provider.resource.attributes["service.version"] == "0.1.0"

    def test_otlp_raises_without_exporter(self) -> None:
        try:
            import opentelemetry.sdk.trace  # noqa: F401
        except ImportError:
            pytest.skip("opentelemetry-sdk not installed")

        with patch.dict(
            "sys.modules",
            {"opentelemetry.exporter.otlp.proto.grpc.trace_exporter": None},
        ):
            with pytest.raises(ImportError, match="opentelemetry-exporter-otlp"):
                configure_telemetry(
                    export_to_console=False,
                    otlp_endpoint="http://localhost:4317",
                )


class TestAttributeConstants:
    def test_constants_are_namespaced(self) -> None:
        for attr in (ATTR_SESSION_ID, ATTR_TOOL_NAME, ATTR_ERROR_KIND, ATTR_UPSTREAM_STATUS):
            assert attr.startswith("esmcp.")


class TestSpanHelpers:
    def test_tool_call_attributes(self) -> None:
        assert tool_call_attributes("esql", "abc", 7) == {
            ATTR_METHOD: "tools/call",
            ATTR_TOOL_NAME: "esql",
            ATTR_SESSION_ID: "abc",
            ATTR_REQUEST_ID: "7",
        }

    def test_record_upstream_error(self) -> None:
        span = MagicMock()
        record_error(span, "upstream_error", 503)

        span.set_attribute.assert_any_call(ATTR_ERROR_KIND, "upstream_error")
        span.set_attribute.assert_any_call(ATTR_UPSTREAM_STATUS, 503)
        (status,) = span.set_status.call_args.args
        assert status.status_code is trace.StatusCode.ERROR

    def test_record_error_without_status(self) -> None:
        span = MagicMock()
        record_error(span, "unknown_tool")
        span.set_attribute.assert_called_once_with(ATTR_ERROR_KIND, "unknown_tool")


class TestToolCallSpans:
    async def test_span_records_upstream_failure(self) -> None:
        from esmcp.protocols.mcp.models import parse_message
        from esmcp.protocols.mcp.server import MCPServer
        from tests.conftest import FakeTools, call_request, initialize_request

        server = MCPServer(FakeTools().registry())
        session = server.new_session()
        await server.handle(session, parse_message(initialize_request()))

        span = MagicMock()
        tracer = MagicMock()
        tracer.start_as_current_span.return_value.__enter__.return_value = span
        with patch("esmcp.protocols.mcp.server._tracer", tracer):
            await server.handle(session, parse_message(call_request(1, "unreachable", {})))

        name = tracer.start_as_current_span.call_args.args[0]
        attributes = tracer.start_as_current_span.call_args.kwargs["attributes"]
        assert name == "mcp.tools.call"
        assert attributes[ATTR_TOOL_NAME] == "unreachable"
        assert attributes[ATTR_SESSION_ID] == session.id
        assert attributes[ATTR_REQUEST_ID] == "1"
        span.set_attribute.assert_called_once_with(ATTR_ERROR_KIND, "upstream_error")
