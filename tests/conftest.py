"""Shared fixtures: a mocked Elasticsearch client and a small fake tool registry."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from esmcp.protocols.errors import UpstreamError
from esmcp.protocols.mcp.models import CallToolResult
from esmcp.protocols.mcp.server import MCPServer
from esmcp.protocols.registry import ToolRegistry, ToolSpec
from esmcp.protocols.schema import FieldKind, FieldSpec


def es_response(body: Any) -> MagicMock:
    """Mimic an ``ObjectApiResponse``: only ``.body`` is read."""
    return MagicMock(body=body)


@pytest.fixture
def es_client() -> MagicMock:
    """An ``AsyncElasticsearch`` stand-in with every API the server uses."""
    client = MagicMock()
    client.info = AsyncMock(
        return_value=es_response({"cluster_name": "test", "version": {"number": "8.15.0"}})
    )
    client.cat.indices = AsyncMock(return_value=es_response([]))
    client.cat.shards = AsyncMock(return_value=es_response([]))
    client.indices.get_mapping = AsyncMock(return_value=es_response({}))
    client.search = AsyncMock(return_value=es_response({"hits": {"total": {"value": 0}, "hits": []}}))
    client.esql.query = AsyncMock(return_value=es_response({"columns": [], "values": []}))
    client.close = AsyncMock()
    return client


class FakeTools:
    """Handlers with observable side effects for dispatcher tests."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.cancelled = 0

    async def echo(self, arguments: dict[str, Any]) -> CallToolResult:
        self.calls.append(("echo", arguments))
        return CallToolResult.from_text(arguments["text"])

    async def wait(self, arguments: dict[str, Any]) -> CallToolResult:
        self.calls.append(("wait", arguments))
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return CallToolResult.from_text("released")

    async def unreachable(self, arguments: dict[str, Any]) -> CallToolResult:
        self.calls.append(("unreachable", arguments))
        raise UpstreamError("connection failed: Connection refused")

    async def crash(self, arguments: dict[str, Any]) -> CallToolResult:
        self.calls.append(("crash", arguments))
        raise KeyError("boom")

    def registry(self) -> ToolRegistry:
        text = FieldSpec(name="text", kind=FieldKind.STRING, required=True)
        return ToolRegistry(
            [
                ToolSpec(name="echo", description="Echo text", fields=(text,), handler=self.echo),
                ToolSpec(name="wait", description="Block until released", handler=self.wait),
                ToolSpec(name="unreachable", description="Always fails upstream", handler=self.unreachable),
                ToolSpec(name="crash", description="Raises a bug", handler=self.crash),
            ]
        )


@pytest.fixture
def fake_tools() -> FakeTools:
    return FakeTools()


@pytest.fixture
def server(fake_tools: FakeTools) -> MCPServer:
    return MCPServer(fake_tools.registry())


def initialize_request(request_id: Any = 0, **params: Any) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "pytest", "version": "1.0"},
            **params,
        },
    }


def call_request(request_id: Any, name: str, arguments: Any = None) -> dict[str, Any]:
    params: dict[str, Any] = {"name": name}
    if arguments is not None:
        params["arguments"] = arguments
    return {"jsonrpc": "2.0", "id": request_id, "method": "tools/call", "params": params}
