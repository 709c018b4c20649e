"""Tests for ToolRegistry."""

from __future__ import annotations

from typing import Any

import pytest

from esmcp.protocols.errors import InvalidArgumentsError, UnknownToolError
from esmcp.protocols.mcp.models import CallToolResult
from esmcp.protocols.registry import ToolRegistry, ToolSpec
from esmcp.protocols.schema import FieldKind, FieldSpec
from tests.conftest import FakeTools


async def _noop(arguments: dict[str, Any]) -> CallToolResult:
    return CallToolResult.from_text("ok")


class TestToolRegistry:
    def test_duplicate_names_rejected(self) -> None:
        spec = ToolSpec(name="dup", description="", handler=_noop)
        with pytest.raises(ValueError, match="Duplicate tool name"):
            ToolRegistry([spec, spec])

    def test_lookup(self, fake_tools: FakeTools) -> None:
        registry = fake_tools.registry()
        assert "echo" in registry
        assert "missing" not in registry
        assert len(registry) == 4
        assert registry.names() == ["echo", "wait", "unreachable", "crash"]
        assert registry.get("echo").name == "echo"

    def test_get_unknown(self, fake_tools: FakeTools) -> None:
        with pytest.raises(UnknownToolError) as exc_info:
            fake_tools.registry().get("nope")
        assert exc_info.value.name == "nope"

    def test_table_is_read_only(self, fake_tools: FakeTools) -> None:
        registry = fake_tools.registry()
        with pytest.raises(TypeError):
            registry._tools["extra"] = registry.get("echo")  # type: ignore[index]

    def test_definitions(self) -> None:
        spec = ToolSpec(
            name="get_mappings",
            title="Get mappings",
            description="Get field mappings",
            fields=(FieldSpec(name="index", kind=FieldKind.STRING, required=True),),
            handler=_noop,
        )
        (definition,) = ToolRegistry([spec]).definitions()
        dumped = definition.model_dump(by_alias=True, exclude_none=True)
        assert dumped["name"] == "get_mappings"
        assert dumped["inputSchema"]["required"] == ["index"]
        assert dumped["annotations"] == {"title": "Get mappings", "readOnlyHint": True}

    async def test_explicit_input_schema(self) -> None:
        schema = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}
        spec = ToolSpec(name="lookup_kb", description="", input_schema=schema, handler=_noop)
        registry = ToolRegistry([spec])

        (definition,) = registry.definitions()
        assert definition.input_schema == schema
        # Arguments are checked by the server that owns the schema.
        await registry.call("lookup_kb", {})


class TestCall:
    async def test_call_runs_handler_with_arguments(self, fake_tools: FakeTools) -> None:
        result = await fake_tools.registry().call("echo", {"text": "hi", "extra": 1})
        assert result.content[0].text == "hi"
        assert fake_tools.calls == [("echo", {"text": "hi", "extra": 1})]

    async def test_unknown_tool_never_calls_handler(self, fake_tools: FakeTools) -> None:
        with pytest.raises(UnknownToolError):
            await fake_tools.registry().call("nope", {})
        assert fake_tools.calls == []

    async def test_invalid_arguments_never_call_handler(self, fake_tools: FakeTools) -> None:
        with pytest.raises(InvalidArgumentsError) as exc_info:
            await fake_tools.registry().call("echo", {})
        assert exc_info.value.field == "text"
        assert fake_tools.calls == []
