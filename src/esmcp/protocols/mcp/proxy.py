"""Re-export the tools of child MCP servers through this server.

Each child configured under ``mcp_servers`` is connected once at startup and
its tools are listed then. A child tool ``lookup`` from the server named
``kb`` is registered as ``lookup_kb``; calls to it are forwarded unchanged
and the child's result is returned as is.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from esmcp.protocols.mcp.client import MCPClient
from esmcp.protocols.registry import ToolHandler, ToolSpec

if TYPE_CHECKING:
    from esmcp.config import ChildServerSettings
    from esmcp.protocols.mcp.models import CallToolResult, MCPToolDef

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def composite_name(tool: str, server: str) -> str:
    """Name under which *server*'s *tool* is exposed."""
    return f"{tool}_{server}"


class ProxyTools:
    """The tools of one connected child, wrapped as forwarding tool specs."""

    def __init__(self, client: MCPClient, tools: Iterable[MCPToolDef]) -> None:
        self.client = client
        self._tools = tuple(tools)

    @classmethod
    async def discover(cls, client: MCPClient) -> ProxyTools:
        """List *client*'s tools once; the set is fixed from then on."""
        tools = await client.list_tools()
        logger.info("%s provides %d tool(s)", client.source, len(tools))
        return cls(client, tools)

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                name=composite_name(tool.name, self.client.name),
                title=tool.title,
                description=tool.description,
                input_schema=tool.input_schema or _EMPTY_SCHEMA,
                read_only=bool(tool.annotations and tool.annotations.read_only_hint),
                handler=self._forward(tool.name),
            )
            for tool in self._tools
        ]

    def _forward(self, tool: str) -> ToolHandler:
        async def handler(arguments: dict[str, Any]) -> CallToolResult:
            return await self.client.call_tool(tool, arguments)

        return handler


async def connect_children(servers: Mapping[str, ChildServerSettings]) -> list[ProxyTools]:
    """Connect every configured child and discover its tools.

    If any child fails, the ones already connected are closed before the
    error propagates.

    Raises:
        UpstreamError: A child could not be started, reached or listed.
    """
    clients: list[MCPClient] = []
    children: list[ProxyTools] = []
    try:
        for name, settings in servers.items():
            logger.info("Adding MCP server %s", name)
            client = MCPClient.from_settings(name, settings)
            clients.append(client)
            await client.connect()
            children.append(await ProxyTools.discover(client))
    except BaseException:
        for client in clients:
            await client.close()
        raise
    return children


async def close_children(children: Iterable[ProxyTools]) -> None:
    for child in children:
        await child.client.close()
