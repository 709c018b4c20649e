"""Protocol layer — MCP dispatch, tool registry and argument schemas."""

from esmcp.protocols.errors import (
    InvalidArgumentsError,
    MCPError,
    ProtocolError,
    SessionTerminatedError,
    UnknownToolError,
    UpstreamError,
)
from esmcp.protocols.registry import ToolRegistry, ToolSpec
from esmcp.protocols.schema import FieldKind, FieldSpec

__all__ = [
    "FieldKind",
    "FieldSpec",
    "InvalidArgumentsError",
    "MCPError",
    "ProtocolError",
    "SessionTerminatedError",
    "ToolRegistry",
    "ToolSpec",
    "UnknownToolError",
    "UpstreamError",
]
