"""Tests for MCP JSON-RPC models and envelope parsing."""

from __future__ import annotations

import json

import pytest

from esmcp.protocols.errors import ProtocolError, UnknownToolError
from esmcp.protocols.mcp.models import (
    CallToolResult,
    ContentBlock,
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    MCPToolDef,
    TextContent,
    parse_message,
    salvage_id,
)


class TestParseMessage:
    def test_request(self) -> None:
        message = parse_message({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert isinstance(message, JsonRpcRequest)
        assert message.id == 1
        assert message.params == {}

    def test_string_id(self) -> None:
        message = parse_message({"jsonrpc": "2.0", "id": "abc", "method": "tools/list"})
        assert isinstance(message, JsonRpcRequest)
        assert message.id == "abc"

    def test_notification_has_no_id(self) -> None:
        message = parse_message({"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert isinstance(message, JsonRpcNotification)

    def test_null_params_are_empty(self) -> None:
        message = parse_message({"jsonrpc": "2.0", "id": 1, "method": "ping", "params": None})
        assert message.params == {}

    @pytest.mark.parametrize(
        "data",
        [
            [],
            "ping",
            {"id": 1, "method": "ping"},
            {"jsonrpc": "1.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 1},
            {"jsonrpc": "2.0", "id": 1, "method": ""},
            {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": [1, 2]},
            {"jsonrpc": "2.0", "id": True, "method": "ping"},
            {"jsonrpc": "2.0", "id": 1.5, "method": "ping"},
            {"jsonrpc": "2.0", "id": None, "method": "ping"},
        ],
    )
    def test_invalid_envelopes(self, data: object) -> None:
        with pytest.raises(ProtocolError):
            parse_message(data)


class TestSalvageId:
    def test_recovers_valid_ids(self) -> None:
        assert salvage_id({"id": 7, "method": 3}) == 7
        assert salvage_id({"id": "x"}) == "x"

    def test_rejects_others(self) -> None:
        assert salvage_id({"id": True}) is None
        assert salvage_id({"id": [1]}) is None
        assert salvage_id("not an object") is None


class TestJsonRpcResponse:
    def test_success_wire(self) -> None:
        wire = JsonRpcResponse.success(3, {"tools": []}).to_wire()
        assert wire == {"jsonrpc": "2.0", "id": 3, "result": {"tools": []}}

    def test_failure_wire(self) -> None:
        response = JsonRpcResponse.failure("a", UnknownToolError("nope"))
        assert response.is_error
        wire = response.to_wire()
        assert "result" not in wire
        assert wire["id"] == "a"
        assert wire["error"]["data"] == {"kind": "unknown_tool", "tool": "nope"}

    def test_null_id_is_explicit(self) -> None:
        wire = JsonRpcResponse.failure(None, ProtocolError("bad")).to_wire()
        assert "id" in wire
        assert wire["id"] is None

    def test_empty_result(self) -> None:
        assert JsonRpcResponse(id=1).to_wire()["result"] == {}


class TestMCPPayloads:
    def test_tool_def_aliases(self) -> None:
        tool = MCPToolDef(name="esql", description="ES|QL", input_schema={"type": "object"})
        dumped = tool.model_dump(by_alias=True, exclude_none=True)
        assert dumped["inputSchema"] == {"type": "object"}
        assert "title" not in dumped

    def test_call_tool_result_text_and_json(self) -> None:
        result = CallToolResult.text_and_json("Found 1 indices:", [{"index": "logs"}])
        dumped = result.model_dump(by_alias=True)
        assert dumped["isError"] is False
        assert dumped["content"][0] == {"type": "text", "text": "Found 1 indices:"}
        assert json.loads(dumped["content"][1]["text"]) == [{"index": "logs"}]

    def test_call_tool_result_keeps_other_content(self) -> None:
        raw = {
            "content": [
                {"type": "text", "text": "chart follows"},
                {"type": "image", "data": "iVBORw0KGgo=", "mimeType": "image/png"},
            ],
            "isError": True,
        }
        result = CallToolResult.model_validate(raw)

        assert isinstance(result.content[0], TextContent)
        assert isinstance(result.content[1], ContentBlock)
        assert result.model_dump(by_alias=True, exclude_none=True) == raw

    def test_initialize_result_aliases(self) -> None:
        result = InitializeResult(
            protocol_version="2025-03-26",
            capabilities={"tools": {}},
            server_info={"name": "s", "version": "1"},
        )
        dumped = result.model_dump(by_alias=True, exclude_none=True)
        assert dumped["protocolVersion"] == "2025-03-26"
        assert dumped["serverInfo"] == {"name": "s", "version": "1"}
        assert "instructions" not in dumped
