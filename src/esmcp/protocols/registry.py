"""ToolRegistry — immutable name-to-tool map with argument validation."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict

from esmcp.protocols.errors import UnknownToolError
from esmcp.protocols.mcp.models import CallToolResult, MCPToolDef, ToolAnnotations
from esmcp.protocols.schema import FieldSpec, to_json_schema, validate_arguments

ToolHandler = Callable[[dict[str, Any]], Awaitable[CallToolResult]]


class ToolSpec(BaseModel):
    """Descriptor of one tool: discovery metadata, input contract and handler.

    *input_schema* replaces the schema rendered from *fields* for tools whose
    contract is owned elsewhere, such as a child MCP server. Only *fields*
    are validated locally.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    handler: ToolHandler
    title: str | None = None
    fields: tuple[FieldSpec, ...] = ()
    input_schema: dict[str, Any] | None = None
    read_only: bool = True

    def definition(self) -> MCPToolDef:
        """Render as a ``tools/list`` entry."""
        return MCPToolDef(
            name=self.name,
            title=self.title,
            description=self.description,
            input_schema=(
                self.input_schema if self.input_schema is not None else to_json_schema(self.fields)
            ),
            annotations=ToolAnnotations(title=self.title, read_only_hint=self.read_only),
        )


class ToolRegistry:
    """Maps tool names to :class:`ToolSpec` and admits or rejects calls.

    Built once at startup and read-only afterwards, so sessions share it
    without locking.

    Usage::

        registry = ToolRegistry(es_tools.specs())
        registry.names()                             # ["list_indices", ...]
        result = await registry.call("esql", {"query": "FROM logs-* | LIMIT 1"})
    """

    def __init__(self, tools: Iterable[ToolSpec]) -> None:
        table: dict[str, ToolSpec] = {}
        for tool in tools:
            if tool.name in table:
                msg = f"Duplicate tool name: {tool.name}"
                raise ValueError(msg)
            table[tool.name] = tool
        self._tools = MappingProxyType(table)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolSpec:
        """Look up a tool by exact name."""
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def definitions(self) -> list[MCPToolDef]:
        return [tool.definition() for tool in self._tools.values()]

    def admit(self, name: str, arguments: dict[str, Any]) -> ToolSpec:
        """Resolve *name* and validate *arguments* without running anything.

        Raises:
            UnknownToolError: If no tool is registered under *name*.
            InvalidArgumentsError: On the first missing or mistyped field.
        """
        tool = self.get(name)
        validate_arguments(tool.fields, arguments)
        return tool

    async def call(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Admit the call, then run the handler with the arguments unmodified."""
        tool = self.admit(name, arguments)
        return await tool.handler(arguments)
