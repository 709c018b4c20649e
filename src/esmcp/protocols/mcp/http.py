"""Streamable HTTP transport — a Starlette app serving one MCP endpoint.

Every ``POST`` carries one JSON-RPC message (or a batch) and is answered with
its response(s) in the HTTP response body, as ``application/json`` or, when
the client only accepts ``text/event-stream``, as a single SSE event.

In stateful mode ``initialize`` creates a session whose id travels in the
``Mcp-Session-Id`` header; ``DELETE`` ends it and idle sessions are reaped.
In stateless mode every ``POST`` runs on a throwaway session that is already
past the handshake.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from esmcp.protocols.errors import ParseError, ProtocolError
from esmcp.protocols.mcp.models import JsonRpcResponse

if TYPE_CHECKING:
    from esmcp.protocols.mcp.server import MCPServer
    from esmcp.protocols.mcp.session import Session

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
DEFAULT_IDLE_TIMEOUT = 300.0


class SessionManager:
    """Tracks stateful HTTP sessions by id."""

    def __init__(self, server: MCPServer, *, idle_timeout: float = DEFAULT_IDLE_TIMEOUT) -> None:
        self._server = server
        self._idle_timeout = idle_timeout
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self) -> Session:
        session = self._server.new_session()
        self._sessions[session.id] = session
        logger.info("HTTP session %s opened", session.id)
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def terminate(self, session_id: str) -> bool:
        """Close and forget a session. Returns False if it was unknown."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("HTTP session %s closed", session_id)
        return True

    async def reap_idle(self, now: float | None = None) -> list[str]:
        """Terminate sessions idle longer than the timeout with nothing in flight."""
        now = time.monotonic() if now is None else now
        expired = [
            sid
            for sid, session in self._sessions.items()
            if not session.open_requests and now - session.last_activity > self._idle_timeout
        ]
        for sid in expired:
            logger.info("HTTP session %s expired after %.0fs idle", sid, self._idle_timeout)
            await self.terminate(sid)
        return expired

    async def close_all(self) -> None:
        for sid in list(self._sessions):
            await self.terminate(sid)


class StreamableHttpTransport:
    """Adapts HTTP requests on a single endpoint to :class:`MCPServer` sessions.

    Usage::

        transport = StreamableHttpTransport(server, path="/mcp")
        uvicorn.run(transport.app, host="127.0.0.1", port=8080)
    """

    def __init__(
        self,
        server: MCPServer,
        *,
        path: str = "/mcp",
        stateless: bool = False,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    ) -> None:
        self._server = server
        self._stateless = stateless
        self._idle_timeout = idle_timeout
        self.sessions = SessionManager(server, idle_timeout=idle_timeout)
        self.app = Starlette(
            routes=[Route(path, endpoint=self._endpoint, methods=["GET", "POST", "DELETE"])],
            lifespan=self._lifespan,
        )

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        reaper = asyncio.create_task(self._reap_forever())
        try:
            yield
        finally:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
            await self.sessions.close_all()

    async def _reap_forever(self) -> None:
        interval = min(max(self._idle_timeout / 2, 1.0), 30.0)
        while True:
            await asyncio.sleep(interval)
            await self.sessions.reap_idle()

    async def _endpoint(self, request: Request) -> Response:
        if request.method == "POST":
            return await self._post(request)
        if request.method == "DELETE":
            return await self._delete(request)
        # The server never initiates messages, so there is no stream to open.
        return Response(status_code=405, headers={"Allow": "POST, DELETE"})

    async def _delete(self, request: Request) -> Response:
        if self._stateless:
            return Response(status_code=405, headers={"Allow": "POST"})
        session_id = request.headers.get(SESSION_HEADER)
        if session_id is None:
            return _error(400, ProtocolError(f"Missing {SESSION_HEADER} header"))
        if not await self.sessions.terminate(session_id):
            return _error(404, ProtocolError("Session not found"))
        return Response(status_code=204)

    async def _post(self, request: Request) -> Response:
        media_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
        if media_type != "application/json":
            return _error(415, ProtocolError("Content-Type must be application/json"))

        body = await request.body()
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Rejecting malformed HTTP body: %s", exc)
            return _error(400, ParseError(f"Parse error: {exc}"))

        items = data if isinstance(data, list) else [data]
        opens_session = any(_is_initialize(item) for item in items)

        created = False
        if self._stateless:
            session = self._server.new_session(ready=not opens_session)
        else:
            session_id = request.headers.get(SESSION_HEADER)
            if session_id is None:
                if not opens_session:
                    return _error(400, ProtocolError(f"Missing {SESSION_HEADER} header"))
                session = self.sessions.create()
                created = True
            else:
                found = self.sessions.get(session_id)
                if found is None or found.is_closing:
                    return _error(404, ProtocolError("Session not found"))
                session = found

        try:
            responses = await self._exchange(request, session, data)
        finally:
            if self._stateless:
                await session.close()
            elif session.is_closing or (created and not session.is_ready):
                # The handshake failed, so the session id is never issued.
                await self.sessions.terminate(session.id)

        issued = not self._stateless and session.id in self.sessions
        headers = {SESSION_HEADER: session.id} if issued else {}
        if responses is None:
            # The session ended (or the client left) before anything could be answered.
            return Response(status_code=404)
        if not responses:
            return Response(status_code=202, headers=headers)

        payload: Any = [r.to_wire() for r in responses] if isinstance(data, list) else responses[0].to_wire()
        if _wants_event_stream(request):
            return StreamingResponse(
                _single_event(payload), media_type="text/event-stream", headers=headers
            )
        return JSONResponse(payload, headers=headers)

    async def _exchange(
        self, request: Request, session: Session, data: Any
    ) -> list[JsonRpcResponse] | None:
        """Run every message of the body and collect the responses.

        Returns ``None`` when requests were admitted but none of them could
        answer because their session terminated or the client disconnected.
        """
        responses: list[JsonRpcResponse] = []

        async def reply(response: JsonRpcResponse) -> None:
            responses.append(response)

        tasks = await self._server.ingest(session, data, reply)
        if not tasks:
            return responses

        pending = asyncio.gather(*tasks, return_exceptions=True)
        disconnect = asyncio.create_task(_wait_for_disconnect(request))
        try:
            done, _ = await asyncio.wait({pending, disconnect}, return_when=asyncio.FIRST_COMPLETED)
            if disconnect in done:
                logger.info("Client of session %s disconnected; cancelling requests", session.id)
                for task in tasks:
                    task.cancel()
            await pending
        finally:
            disconnect.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await disconnect

        if not responses and any(t.cancelled() for t in tasks):
            return None
        return responses


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _single_event(payload: Any) -> AsyncIterator[str]:
    yield f"event: message\ndata: {json.dumps(payload, separators=(',', ':'), default=str)}\n\n"


def _is_initialize(item: Any) -> bool:
    return isinstance(item, dict) and item.get("method") == "initialize" and "id" in item


def _wants_event_stream(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "text/event-stream" in accept and "application/json" not in accept


def _error(status: int, error: ProtocolError) -> JSONResponse:
    return JSONResponse(JsonRpcResponse.failure(None, error).to_wire(), status_code=status)
