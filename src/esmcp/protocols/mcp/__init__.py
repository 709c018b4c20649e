"""MCP protocol — Model Context Protocol server."""

from esmcp.protocols.mcp.models import (
    CallToolResult,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    MCPToolDef,
    TextContent,
)
from esmcp.protocols.mcp.server import MCPServer
from esmcp.protocols.mcp.session import Session, SessionState
from esmcp.protocols.mcp.transport import MCPTransport, StdioTransport

__all__ = [
    "CallToolResult",
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "MCPServer",
    "MCPToolDef",
    "MCPTransport",
    "Session",
    "SessionState",
    "StdioTransport",
    "TextContent",
]
