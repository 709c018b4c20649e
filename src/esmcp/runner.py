"""Wire configuration, the Elasticsearch client and a transport into a running server."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING

import uvicorn

from esmcp.elasticsearch.client import check_connection, create_client
from esmcp.elasticsearch.tools import ElasticsearchTools
from esmcp.errors import ConfigError
from esmcp.protocols.mcp.http import StreamableHttpTransport
from esmcp.protocols.mcp.proxy import ProxyTools, close_children, connect_children
from esmcp.protocols.mcp.server import MCPServer
from esmcp.protocols.mcp.transport import StdioTransport
from esmcp.protocols.registry import ToolRegistry

if TYPE_CHECKING:
    from elasticsearch import AsyncElasticsearch

    from esmcp.config import ServerConfig

logger = logging.getLogger(__name__)


def build_server(
    client: AsyncElasticsearch | None, children: Sequence[ProxyTools] = ()
) -> MCPServer:
    """Create the dispatcher with the Elasticsearch tools and those of *children*.

    Raises:
        ConfigError: If two tools end up with the same name.
    """
    specs = ElasticsearchTools(client).specs()
    for child in children:
        specs.extend(child.specs())
    try:
        registry = ToolRegistry(specs)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return MCPServer(registry)


def build_http_transport(config: ServerConfig, server: MCPServer) -> StreamableHttpTransport:
    return StreamableHttpTransport(
        server,
        path=config.http.path,
        stateless=config.http.stateless,
        idle_timeout=config.http.session_idle_timeout,
    )


@contextlib.asynccontextmanager
async def serving(config: ServerConfig, *, check: bool = True) -> AsyncIterator[MCPServer]:
    """Connect the cluster and every child MCP server, yield the server, then close them.

    Raises:
        UpstreamError: If *check* is set and the cluster cannot be reached,
            or a child server cannot be started.
        ConfigError: If tool names collide.
    """
    client = create_client(config.elasticsearch)
    children: list[ProxyTools] = []
    try:
        if check:
            await check_connection(client)
        children = await connect_children(config.mcp_servers)
        yield build_server(client, children)
    finally:
        await close_children(children)
        await client.close()


async def run_stdio(config: ServerConfig, *, check: bool = True) -> None:
    """Serve one session over stdin/stdout until the client closes the stream."""
    async with serving(config, check=check) as server:
        transport = await StdioTransport.open(max_frame_bytes=config.stdio.max_frame_bytes)
        logger.info("Serving MCP over stdio")
        await server.serve(transport)


async def run_http(config: ServerConfig, *, check: bool = True) -> None:
    """Serve streamable HTTP until uvicorn is asked to stop."""
    async with serving(config, check=check) as server:
        transport = build_http_transport(config, server)
        uv_config = uvicorn.Config(
            transport.app,
            host=config.http.host,
            port=config.http.port,
            log_config=None,
        )
        logger.info(
            "Serving MCP over HTTP at http://%s:%d%s%s",
            config.http.host,
            config.http.port,
            config.http.path,
            " (stateless)" if config.http.stateless else "",
        )
        await uvicorn.Server(uv_config).serve()
