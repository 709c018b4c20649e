"""MCPServer — the protocol state machine shared by every transport.

The server never touches bytes or sockets. A transport hands it decoded JSON
values through :meth:`MCPServer.receive` together with a ``reply`` callback;
the server validates the envelope, drives the session's state machine and
routes ``tools/call`` through the :class:`~esmcp.protocols.registry.ToolRegistry`.

Requests on a Ready session run as independent tasks owned by the session,
so a slow Elasticsearch call never stalls the transport's read loop.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from esmcp import __version__
from esmcp.protocols.errors import (
    FramingError,
    InternalError,
    InvalidParamsError,
    MalformedFrameError,
    MCPError,
    MethodNotFoundError,
    ParseError,
    ProtocolError,
    SessionTerminatedError,
    TransportError,
    UpstreamError,
)
from esmcp.protocols.mcp.models import (
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    Implementation,
    InitializeResult,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    parse_message,
    salvage_id,
)
from esmcp.protocols.mcp.session import Session, SessionState
from esmcp.utils.telemetry import get_tracer, record_error, tool_call_attributes

if TYPE_CHECKING:
    import asyncio

    from esmcp.protocols.mcp.transport import MCPTransport
    from esmcp.protocols.registry import ToolRegistry

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

Reply = Callable[[JsonRpcResponse], Awaitable[None]]
MethodHandler = Callable[[Session, JsonRpcRequest], Awaitable[dict[str, Any]]]

SERVER_NAME = "elasticsearch-mcp-server"
SERVER_INSTRUCTIONS = "Provides access to Elasticsearch"


class MCPServer:
    """Dispatches MCP messages for any number of concurrent sessions.

    Usage::

        server = MCPServer(registry)

        # stream transports: one session per connection
        await server.serve(await StdioTransport.open())

        # request/response transports: drive a session directly
        session = server.new_session()
        response = await server.handle(session, parse_message(body))
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        name: str = SERVER_NAME,
        version: str = __version__,
        instructions: str | None = SERVER_INSTRUCTIONS,
    ) -> None:
        self._registry = registry
        self._info = Implementation(name=name, version=version)
        self._instructions = instructions
        self._methods: dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def info(self) -> Implementation:
        return self._info

    def new_session(self, *, ready: bool = False) -> Session:
        """Create a session, optionally skipping the handshake (stateless HTTP)."""
        session = Session()
        if ready:
            session.mark_ready(LATEST_PROTOCOL_VERSION)
        return session

    # ------------------------------------------------------------------
    # Stream serving
    # ------------------------------------------------------------------

    async def serve(self, transport: MCPTransport) -> None:
        """Run one session over a stream transport until it closes.

        Frames are read strictly in order; each request on a Ready session
        is spawned as its own task and replies whenever it completes.
        """
        session = self.new_session()
        logger.info("Session %s opened", session.id)

        async def reply(response: JsonRpcResponse) -> None:
            try:
                await transport.send(response.to_wire())
            except TransportError as exc:
                logger.debug("Session %s: dropping response %r: %s", session.id, response.id, exc)

        try:
            while not session.is_closing:
                try:
                    data = await transport.receive()
                except MalformedFrameError as exc:
                    logger.warning("Session %s: malformed frame: %s", session.id, exc)
                    await reply(JsonRpcResponse.failure(None, ParseError(f"Parse error: {exc}")))
                    continue
                except FramingError as exc:
                    logger.error("Session %s: unrecoverable framing error: %s", session.id, exc)
                    break
                if data is None:
                    logger.info("Session %s: end of stream", session.id)
                    break
                await self.ingest(session, data, reply)
        finally:
            await session.close()
            await transport.close()
            logger.info("Session %s closed", session.id)

    async def ingest(
        self, session: Session, data: Any, reply: Reply
    ) -> list[asyncio.Task[Any]]:
        """Admit one decoded frame, which may be a JSON-RPC batch.

        Returns the tasks spawned for requests; anything resolved inline
        (invalid envelopes, notifications, the handshake) has already been
        passed to *reply* when this returns.
        """
        if isinstance(data, list):
            if not data:
                await reply(JsonRpcResponse.failure(None, ProtocolError("Invalid Request: empty batch")))
                return []
            tasks: list[asyncio.Task[Any]] = []
            for item in data:
                task = await self.receive(session, item, reply)
                if task is not None:
                    tasks.append(task)
            return tasks

        task = await self.receive(session, data, reply)
        return [task] if task is not None else []

    async def receive(self, session: Session, data: Any, reply: Reply) -> asyncio.Task[Any] | None:
        """Admit one decoded message.

        Notifications and anything arriving before the handshake completes
        are handled inline, so the next frame already sees their effect.
        Requests on a Ready session become session-owned tasks.
        """
        session.touch()
        try:
            message = parse_message(data)
        except ProtocolError as exc:
            logger.warning("Session %s: invalid envelope: %s", session.id, exc)
            await reply(JsonRpcResponse.failure(salvage_id(data), exc))
            return None

        if isinstance(message, JsonRpcNotification) or not session.is_ready:
            response = await self.handle(session, message)
            if response is not None:
                await reply(response)
            return None

        try:
            return self.submit(session, message, reply)
        except SessionTerminatedError:
            return None
        except ProtocolError as exc:
            logger.warning("Session %s: %s", session.id, exc)
            # The open request still owns this id.
            await reply(JsonRpcResponse.failure(None, exc))
            return None

    def submit(self, session: Session, request: JsonRpcRequest, reply: Reply) -> asyncio.Task[Any]:
        """Schedule *request* as its own task, keyed by its id within *session*.

        The task passes the response to *reply* when it completes; if it is
        cancelled first, nothing is sent.

        Raises:
            SessionTerminatedError: The session is closing.
            ProtocolError: The id is already in flight on this session.
        """
        return session.start_request(request.id, self._respond(session, request, reply))

    async def _respond(self, session: Session, request: JsonRpcRequest, reply: Reply) -> None:
        response = await self.handle(session, request)
        if response is not None:
            await reply(response)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, session: Session, message: JsonRpcMessage) -> JsonRpcResponse | None:
        """Process one message and return its response.

        Returns ``None`` for notifications and for requests whose session is
        closing; every other request yields exactly one response.
        """
        if session.is_closing:
            return None

        if session.state is SessionState.HANDSHAKING and message.method != "initialize":
            session.begin_closing()
            error = ProtocolError(
                f"Expected 'initialize' as the first message, got '{message.method}'"
            )
            logger.warning("Session %s: handshake violation: %s", session.id, error)
            if isinstance(message, JsonRpcRequest):
                return JsonRpcResponse.failure(message.id, error)
            return None

        if isinstance(message, JsonRpcNotification):
            self._notify(session, message)
            return None

        handler = self._methods.get(message.method)
        try:
            if handler is None:
                raise MethodNotFoundError(message.method)
            result = await handler(session, message)
        except MCPError as exc:
            return JsonRpcResponse.failure(message.id, exc)
        return JsonRpcResponse.success(message.id, result)

    def _notify(self, session: Session, notification: JsonRpcNotification) -> None:
        if notification.method == "notifications/initialized":
            logger.debug("Session %s: client initialized", session.id)
        elif notification.method == "notifications/cancelled":
            request_id = salvage_id({"id": notification.params.get("requestId")})
            if request_id is not None and session.cancel_request(request_id):
                logger.info(
                    "Session %s: request %r cancelled by client (%s)",
                    session.id,
                    request_id,
                    notification.params.get("reason", "no reason given"),
                )
        else:
            logger.debug("Session %s: ignoring notification %s", session.id, notification.method)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def _initialize(self, session: Session, request: JsonRpcRequest) -> dict[str, Any]:
        params = request.params
        if session.state is not SessionState.HANDSHAKING:
            msg = "Session is already initialized"
            raise ProtocolError(msg)

        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION

        client_info: Implementation | None = None
        raw_info = params.get("clientInfo")
        if raw_info is not None:
            try:
                client_info = Implementation.model_validate(raw_info)
            except ValidationError:
                logger.debug("Session %s: ignoring malformed clientInfo %r", session.id, raw_info)

        capabilities = params.get("capabilities")
        session.mark_ready(
            version,
            client_info,
            capabilities if isinstance(capabilities, dict) else None,
        )
        logger.info(
            "Session %s: initialized (protocol %s, client %s)",
            session.id,
            version,
            f"{client_info.name} {client_info.version}" if client_info else "unknown",
        )

        result = InitializeResult(
            protocol_version=version,
            capabilities={"tools": {"listChanged": False}},
            server_info=self._info,
            instructions=self._instructions,
        )
        return result.model_dump(by_alias=True, exclude_none=True)

    async def _ping(self, session: Session, request: JsonRpcRequest) -> dict[str, Any]:
        return {}

    async def _list_tools(self, session: Session, request: JsonRpcRequest) -> dict[str, Any]:
        tools = [
            tool.model_dump(by_alias=True, exclude_none=True)
            for tool in self._registry.definitions()
        ]
        return {"tools": tools}

    async def _call_tool(self, session: Session, request: JsonRpcRequest) -> dict[str, Any]:
        params = request.params
        name = params.get("name")
        if not isinstance(name, str) or not name:
            msg = "Invalid params: 'name' must be a non-empty string"
            raise InvalidParamsError(msg)
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            msg = "Invalid params: 'arguments' must be an object"
            raise InvalidParamsError(msg)

        attributes = tool_call_attributes(name, session.id, request.id)
        with _tracer.start_as_current_span("mcp.tools.call", attributes=attributes) as span:
            try:
                result = await self._registry.call(name, arguments)
            except UpstreamError as exc:
                record_error(span, exc.kind, exc.status)
                logger.warning("Tool %s failed upstream: %s", name, exc)
                raise
            except MCPError as exc:
                record_error(span, exc.kind)
                logger.info("Tool %s rejected: %s", name, exc)
                raise
            except Exception as exc:
                record_error(span, InternalError.kind)
                logger.exception("Tool %s failed unexpectedly", name)
                raise InternalError(f"Tool {name} failed: {exc}") from exc

        logger.debug("Session %s: request %r (%s) completed", session.id, request.id, name)
        return result.model_dump(by_alias=True, exclude_none=True)
