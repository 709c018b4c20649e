"""Tests for the protocol error taxonomy."""

from __future__ import annotations

from esmcp.protocols.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    UPSTREAM_ERROR,
    FramingError,
    InternalError,
    InvalidArgumentsError,
    InvalidParamsError,
    MalformedFrameError,
    MCPError,
    MethodNotFoundError,
    ParseError,
    ProtocolError,
    SessionTerminatedError,
    TransportError,
    UnknownToolError,
    UpstreamError,
)


class TestErrorCodes:
    def test_protocol_errors_share_kind(self) -> None:
        for error in (
            ProtocolError("bad"),
            ParseError("bad json"),
            MethodNotFoundError("nope"),
            InvalidParamsError("bad params"),
        ):
            assert error.kind == "protocol_error"

    def test_codes(self) -> None:
        assert ProtocolError("x").code == INVALID_REQUEST
        assert ParseError("x").code == PARSE_ERROR
        assert MethodNotFoundError("x").code == METHOD_NOT_FOUND
        assert InvalidParamsError("x").code == INVALID_PARAMS
        assert UnknownToolError("x").code == INVALID_PARAMS
        assert InvalidArgumentsError("f", "r").code == INVALID_PARAMS
        assert UpstreamError("x").code == UPSTREAM_ERROR
        assert InternalError("x").code == INTERNAL_ERROR

    def test_all_are_mcp_errors(self) -> None:
        assert issubclass(UnknownToolError, MCPError)
        assert issubclass(UpstreamError, MCPError)
        assert issubclass(SessionTerminatedError, MCPError)


class TestToError:
    def test_unknown_tool(self) -> None:
        error = UnknownToolError("nope").to_error()
        assert error == {
            "code": INVALID_PARAMS,
            "message": "Unknown tool: nope",
            "data": {"kind": "unknown_tool", "tool": "nope"},
        }

    def test_invalid_arguments_names_field(self) -> None:
        error = InvalidArgumentsError("index", "required field is missing")
        assert error.field == "index"
        assert error.to_error()["data"] == {"kind": "invalid_arguments", "field": "index"}
        assert "index" in error.message

    def test_upstream_with_status(self) -> None:
        error = UpstreamError("index_not_found_exception: no such index", status=404)
        body = error.to_error()
        assert body["data"] == {"kind": "upstream_error", "status": 404}
        assert body["message"].startswith("Elasticsearch error (404)")

    def test_upstream_without_status(self) -> None:
        error = UpstreamError("connection failed: refused")
        assert error.to_error()["data"]["status"] is None
        assert error.message == "Elasticsearch error: connection failed: refused"

    def test_upstream_names_child_server(self) -> None:
        error = UpstreamError("tool exploded", source="MCP server 'kb'")
        assert error.message == "MCP server 'kb' error: tool exploded"
        assert error.to_error()["data"] == {"kind": "upstream_error", "status": None}

    def test_method_not_found_message(self) -> None:
        assert MethodNotFoundError("tools/frobnicate").message == (
            "Method not found: tools/frobnicate"
        )


class TestTransportErrors:
    def test_hierarchy(self) -> None:
        assert issubclass(MalformedFrameError, TransportError)
        assert issubclass(FramingError, TransportError)
        assert not issubclass(TransportError, MCPError)
