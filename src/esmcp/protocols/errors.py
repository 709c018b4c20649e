"""Shared error types for the protocol layer.

Every error that can reach a client maps to a JSON-RPC error object through
:meth:`MCPError.to_error`. The ``kind`` attribute is copied into ``data.kind``
so clients can tell an unknown tool from an upstream failure without parsing
messages.
"""

from __future__ import annotations

from typing import Any

# JSON-RPC 2.0 reserved codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Implementation-defined server error range
UPSTREAM_ERROR = -32000


class MCPError(Exception):
    """Base error for all failures reported to an MCP client."""

    code: int = INTERNAL_ERROR
    kind: str = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def error_data(self) -> dict[str, Any]:
        """Extra members of the JSON-RPC ``data`` object."""
        return {}

    def to_error(self) -> dict[str, Any]:
        """Render as a JSON-RPC error object."""
        return {
            "code": self.code,
            "message": self.message,
            "data": {"kind": self.kind, **self.error_data()},
        }


class ProtocolError(MCPError):
    """Invalid envelope, handshake violation or duplicate request id."""

    code = INVALID_REQUEST
    kind = "protocol_error"


class ParseError(ProtocolError):
    """The frame could not be decoded as JSON."""

    code = PARSE_ERROR


class MethodNotFoundError(ProtocolError):
    code = METHOD_NOT_FOUND

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"Method not found: {method}")


class InvalidParamsError(ProtocolError):
    code = INVALID_PARAMS


class UnknownToolError(MCPError):
    """Requested tool does not exist in the registry."""

    code = INVALID_PARAMS
    kind = "unknown_tool"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")

    def error_data(self) -> dict[str, Any]:
        return {"tool": self.name}


class InvalidArgumentsError(MCPError):
    """Tool arguments failed schema validation on ``field``."""

    code = INVALID_PARAMS
    kind = "invalid_arguments"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid argument '{field}': {reason}")

    def error_data(self) -> dict[str, Any]:
        return {"field": self.field}


class UpstreamError(MCPError):
    """Elasticsearch or a child MCP server rejected the request or could not be reached."""

    code = UPSTREAM_ERROR
    kind = "upstream_error"

    def __init__(
        self, reason: str, status: int | None = None, *, source: str = "Elasticsearch"
    ) -> None:
        self.reason = reason
        self.status = status
        self.source = source
        prefix = f"{source} error ({status})" if status is not None else f"{source} error"
        super().__init__(f"{prefix}: {reason}")

    def error_data(self) -> dict[str, Any]:
        return {"status": self.status}


class InternalError(MCPError):
    """A handler failed in a way that does not fit the taxonomy."""


class SessionTerminatedError(MCPError):
    """The owning session closed while the request was in flight.

    Never rendered to a client: the request is abandoned.
    """

    kind = "session_terminated"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session terminated: {session_id}")


class TransportError(Exception):
    """Base error for transport-level failures."""


class MalformedFrameError(TransportError):
    """A single frame was unreadable; the stream itself is intact."""


class FramingError(TransportError):
    """The stream's framing is corrupted and cannot be resynchronized."""
