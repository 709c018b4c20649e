"""MCPClient — connects to a child MCP server and forwards tool calls.

A child is reached over a subprocess speaking newline-delimited JSON
(:class:`ChildProcessTransport`) or over streamable HTTP
(:class:`HttpClientTransport`). Both satisfy :class:`ClientTransport`, which
hands back the response matching each request, so any number of calls can
be in flight on one client.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from esmcp import __version__
from esmcp.config import StdioServerSettings
from esmcp.protocols.errors import MethodNotFoundError, TransportError, UpstreamError
from esmcp.protocols.mcp.models import (
    LATEST_PROTOCOL_VERSION,
    CallToolResult,
    Implementation,
    JsonRpcResponse,
    MCPToolDef,
    RequestId,
    salvage_id,
)
from esmcp.protocols.mcp.http import SESSION_HEADER
from esmcp.protocols.mcp.transport import DEFAULT_MAX_FRAME_BYTES

if TYPE_CHECKING:
    from esmcp.config import ChildServerSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class ClientTransport(Protocol):
    """Client side of an MCP connection."""

    async def connect(self) -> None: ...
    async def request(self, message: dict[str, Any]) -> dict[str, Any]: ...
    async def notify(self, message: dict[str, Any]) -> None: ...
    async def close(self) -> None: ...


class ChildProcessTransport:
    """Runs an MCP server as a subprocess and talks to it over stdin/stdout.

    A reader task routes every response to the request waiting on its id.
    The child's stderr is inherited.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        *,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    ) -> None:
        self._command = command
        self._args = tuple(args)
        self._env = dict(env) if env else None
        self._max_frame_bytes = max_frame_bytes
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._pending: dict[RequestId, asyncio.Future[dict[str, Any]]] = {}
        self._write_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"ChildProcessTransport({self._command!r})"

    async def connect(self) -> None:
        """Launch the subprocess and start reading its output."""
        env = {**os.environ, **self._env} if self._env else None
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._command,
                *self._args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=env,
                limit=self._max_frame_bytes,
            )
        except OSError as exc:
            raise TransportError(f"cannot start {self._command}: {exc}") from exc
        assert self._process.stdout is not None
        self._reader = asyncio.create_task(self._read_loop(self._process.stdout))

    async def request(self, message: dict[str, Any]) -> dict[str, Any]:
        """Send *message* and wait for the response carrying its id."""
        if self._reader is None or self._reader.done():
            msg = f"{self._command} is not running"
            raise TransportError(msg)
        request_id = message["id"]
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(message)
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, message: dict[str, Any]) -> None:
        await self._send(message)

    async def close(self) -> None:
        """Close stdin, stop the subprocess and fail anything still pending."""
        process, self._process = self._process, None
        if process is not None:
            if process.stdin is not None:
                process.stdin.close()
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            await process.wait()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        self._fail_pending(TransportError(f"{self._command} was closed"))

    async def _send(self, message: dict[str, Any]) -> None:
        if self._process is None or self._process.stdin is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        line = json.dumps(message, separators=(",", ":")) + "\n"
        async with self._write_lock:
            try:
                self._process.stdin.write(line.encode())
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise TransportError(f"{self._command} stopped reading: {exc}") from exc

    async def _read_loop(self, stdout: asyncio.StreamReader) -> None:
        try:
            while True:
                try:
                    line = await stdout.readline()
                except ValueError:
                    logger.error("%r: frame exceeds %d bytes", self, self._max_frame_bytes)
                    return
                if not line:
                    return
                if not line.strip():
                    continue
                try:
                    message = json.loads(line)
                except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                    logger.warning("%r: ignoring unreadable frame: %s", self, exc)
                    continue
                await self._dispatch(message)
        finally:
            self._fail_pending(TransportError(f"{self._command} closed its output"))

    async def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning("%r: ignoring non-object frame", self)
            return
        if "method" not in message:
            request_id = salvage_id(message)
            future = self._pending.get(request_id) if request_id is not None else None
            if future is not None and not future.done():
                future.set_result(message)
            return
        if "id" not in message:
            logger.debug("%r: notification %s", self, message["method"])
            return
        # Requests from the child: only ping is served.
        request_id = salvage_id(message)
        if message["method"] == "ping" and request_id is not None:
            reply = JsonRpcResponse.success(request_id, {})
        else:
            reply = JsonRpcResponse.failure(request_id, MethodNotFoundError(str(message["method"])))
        try:
            await self._send(reply.to_wire())
        except TransportError as exc:
            logger.debug("%r: cannot answer %s: %s", self, message["method"], exc)

    def _fail_pending(self, error: TransportError) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)


class HttpClientTransport:
    """Talks to a streamable-HTTP MCP server, one ``POST`` per message.

    Responses arrive as JSON or as an SSE stream. The session id issued on
    ``initialize`` is sent with every later request and released on close.
    """

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._session_id: str | None = None

    def __repr__(self) -> str:
        return f"HttpClientTransport({self._url!r})"

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

    async def request(self, message: dict[str, Any]) -> dict[str, Any]:
        response = await self._post(message)
        if response.headers.get("content-type", "").startswith("text/event-stream"):
            candidates: list[Any] = list(_sse_messages(response.text))
        else:
            try:
                body = response.json()
            except ValueError as exc:
                raise TransportError(f"{self._url} returned invalid JSON: {exc}") from exc
            candidates = body if isinstance(body, list) else [body]

        for candidate in candidates:
            if isinstance(candidate, dict) and candidate.get("id") == message["id"]:
                return candidate
        msg = f"{self._url} sent no response for request {message['id']!r}"
        raise TransportError(msg)

    async def notify(self, message: dict[str, Any]) -> None:
        await self._post(message)

    async def close(self) -> None:
        """End the remote session, if any, and release the HTTP client."""
        if self._client is None:
            return
        if self._session_id is not None:
            try:
                await self._client.delete(self._url, headers=self._request_headers())
            except httpx.HTTPError as exc:
                logger.debug("%r: session release failed: %s", self, exc)
            self._session_id = None
        if self._owns_client:
            await self._client.aclose()
            self._client = None

    def _request_headers(self) -> dict[str, str]:
        headers = {**self._headers, "Accept": "application/json, text/event-stream"}
        if self._session_id is not None:
            headers[SESSION_HEADER] = self._session_id
        return headers

    async def _post(self, message: dict[str, Any]) -> httpx.Response:
        if self._client is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        try:
            response = await self._client.post(
                self._url, json=message, headers=self._request_headers()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            msg = f"{self._url} answered HTTP {exc.response.status_code}"
            raise TransportError(msg) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"cannot reach {self._url}: {exc}") from exc

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self._session_id = session_id
        return response


def _sse_messages(text: str) -> Iterator[Any]:
    """Yield the decoded ``data`` payload of each event in an SSE body."""
    for event in text.replace("\r\n", "\n").split("\n\n"):
        data = [line[5:].lstrip() for line in event.split("\n") if line.startswith("data:")]
        if not data:
            continue
        try:
            yield json.loads("\n".join(data))
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON SSE event")


class MCPClient:
    """Async context manager for one child MCP server.

    Usage::

        transport = ChildProcessTransport("kb-server", ["--stdio"])
        async with MCPClient("kb", transport) as client:
            tools = await client.list_tools()
            result = await client.call_tool("lookup", {"q": "shard allocation"})

    Every failure, whether the child answers with an error or cannot be
    reached, surfaces as :class:`UpstreamError` naming the child.
    """

    def __init__(self, name: str, transport: ClientTransport) -> None:
        self.name = name
        self._transport = transport
        self._next_id = 1
        self.server_info: Implementation | None = None

    @classmethod
    def from_settings(cls, name: str, settings: ChildServerSettings) -> MCPClient:
        """Build a client with the transport the configuration asks for."""
        if isinstance(settings, StdioServerSettings):
            transport: ClientTransport = ChildProcessTransport(
                settings.command, settings.args, settings.env
            )
        else:
            transport = HttpClientTransport(
                settings.url, settings.headers, timeout=settings.timeout
            )
        return cls(name, transport)

    async def __aenter__(self) -> MCPClient:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    @property
    def source(self) -> str:
        return f"MCP server '{self.name}'"

    async def connect(self) -> None:
        """Connect the transport and perform the initialize handshake."""
        try:
            await self._transport.connect()
        except TransportError as exc:
            raise UpstreamError(str(exc), source=self.source) from exc

        result = await self._request(
            "initialize",
            {
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "esmcp", "version": __version__},
            },
        )
        raw_info = result.get("serverInfo")
        if isinstance(raw_info, dict):
            self.server_info = Implementation.model_validate(raw_info)
        await self._notify("notifications/initialized")
        info = self.server_info
        described = f"{info.name} {info.version}" if info else "unknown"
        logger.info("Connected to %s (%s)", self.source, described)

    async def close(self) -> None:
        await self._transport.close()

    async def list_tools(self) -> list[MCPToolDef]:
        """Send ``tools/list``, following pagination cursors."""
        tools: list[MCPToolDef] = []
        cursor: str | None = None
        while True:
            result = await self._request("tools/list", {"cursor": cursor} if cursor else {})
            for raw in result.get("tools", []):
                tools.append(MCPToolDef.model_validate(raw))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Send ``tools/call`` and return the child's result unchanged."""
        result = await self._request("tools/call", {"name": name, "arguments": arguments})
        return CallToolResult.model_validate(result)

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        request_id = self._next_id
        self._next_id += 1
        message = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}

        try:
            response = await self._transport.request(message)
        except asyncio.CancelledError:
            params = {"requestId": request_id, "reason": "cancelled by client"}
            await self._notify("notifications/cancelled", params)
            raise
        except TransportError as exc:
            raise UpstreamError(str(exc), source=self.source) from exc

        error = response.get("error")
        if isinstance(error, dict):
            reason = f"{error.get('message', 'unknown error')} (code {error.get('code')})"
            raise UpstreamError(reason, source=self.source)
        result = response.get("result")
        if not isinstance(result, dict):
            raise UpstreamError(f"malformed response to {method}", source=self.source)
        return result

    async def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        try:
            await self._transport.notify(message)
        except TransportError as exc:
            logger.debug("%s: %s not delivered: %s", self.source, method, exc)
