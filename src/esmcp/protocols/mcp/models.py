"""MCP models — JSON-RPC 2.0 messages, tool definitions and results.

Implements the message format used by the Model Context Protocol for the
handshake (``initialize``), tool discovery (``tools/list``) and execution
(``tools/call``).
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from esmcp.protocols.errors import MCPError, ProtocolError

RequestId = Union[StrictInt, StrictStr]

# Newest first; the first entry is offered when the client asks for an
# unsupported version.
SUPPORTED_PROTOCOL_VERSIONS = ("2025-03-26", "2024-11-05")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

# ---------------------------------------------------------------------------
# JSON-RPC 2.0 envelope
# ---------------------------------------------------------------------------


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request message."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    id: RequestId
    params: dict[str, Any] = Field(default_factory=dict)


class JsonRpcNotification(BaseModel):
    """A JSON-RPC 2.0 notification (a request without ``id``)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class JsonRpcError(BaseModel):
    """A JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC 2.0 response message.

    ``id`` is ``None`` only when the request id could not be recovered,
    e.g. in answer to an unparseable frame.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None = None
    result: dict[str, Any] | None = None
    error: JsonRpcError | None = None

    @classmethod
    def success(cls, request_id: RequestId, result: dict[str, Any]) -> JsonRpcResponse:
        return cls(id=request_id, result=result)

    @classmethod
    def failure(cls, request_id: RequestId | None, error: MCPError) -> JsonRpcResponse:
        return cls(id=request_id, error=JsonRpcError.model_validate(error.to_error()))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with exactly one of ``result`` / ``error`` and an explicit ``id``."""
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump()
        else:
            body["result"] = self.result if self.result is not None else {}
        return body


JsonRpcMessage = Union[JsonRpcRequest, JsonRpcNotification]


def salvage_id(data: Any) -> RequestId | None:
    """Best-effort recovery of a request id from an invalid envelope."""
    if isinstance(data, dict):
        candidate = data.get("id")
        if isinstance(candidate, str) or (
            isinstance(candidate, int) and not isinstance(candidate, bool)
        ):
            return candidate
    return None


def parse_message(data: Any) -> JsonRpcMessage:
    """Validate a decoded JSON value as a request or notification envelope.

    Raises:
        ProtocolError: If the value is not a well-formed JSON-RPC 2.0 message.
    """
    if not isinstance(data, dict):
        raise ProtocolError("Invalid Request: expected a JSON object")
    if data.get("jsonrpc") != "2.0":
        raise ProtocolError("Invalid Request: 'jsonrpc' must be \"2.0\"")
    method = data.get("method")
    if not isinstance(method, str) or not method:
        raise ProtocolError("Invalid Request: 'method' must be a non-empty string")
    params = data.get("params", {})
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise ProtocolError("Invalid Request: 'params' must be an object")

    if "id" not in data:
        return JsonRpcNotification(method=method, params=params)

    request_id = salvage_id(data)
    if request_id is None:
        raise ProtocolError("Invalid Request: 'id' must be a string or an integer")
    return JsonRpcRequest(method=method, id=request_id, params=params)


# ---------------------------------------------------------------------------
# MCP-specific payloads
# ---------------------------------------------------------------------------


class Implementation(BaseModel):
    """Name and version of an MCP client or server."""

    name: str
    version: str


class ToolAnnotations(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    read_only_hint: bool | None = Field(default=None, alias="readOnlyHint")


class MCPToolDef(BaseModel):
    """A tool definition as returned by ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    title: str | None = None
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")
    annotations: ToolAnnotations | None = None


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ContentBlock(BaseModel):
    """Any non-text content item (image, audio, resource), kept as received."""

    model_config = ConfigDict(extra="allow")

    type: str


Content = Annotated[Union[TextContent, ContentBlock], Field(union_mode="left_to_right")]


class CallToolResult(BaseModel):
    """Result payload of a successful ``tools/call``."""

    model_config = ConfigDict(populate_by_name=True)

    content: list[Content] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def from_text(cls, text: str) -> CallToolResult:
        """Create a result with a single text content part."""
        return cls(content=[TextContent(text=text)])

    @classmethod
    def text_and_json(cls, summary: str, data: Any) -> CallToolResult:
        """A human summary followed by the JSON-encoded data."""
        return cls(
            content=[
                TextContent(text=summary),
                TextContent(text=json.dumps(data, default=str)),
            ]
        )


class InitializeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any]
    server_info: Implementation = Field(alias="serverInfo")
    instructions: str | None = None
