"""Session — protocol state and the in-flight request table of one client.

A session moves Handshaking → Ready → Closing and never goes back. It owns
one :class:`asyncio.Task` per open request id; closing the session cancels
them all, which propagates into whatever Elasticsearch call each task is
awaiting.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine
from enum import Enum
from typing import Any
from uuid import uuid4

from esmcp.protocols.errors import ProtocolError, SessionTerminatedError
from esmcp.protocols.mcp.models import Implementation, RequestId

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSING = "closing"


class Session:
    """One logical client conversation."""

    def __init__(self, session_id: str | None = None) -> None:
        self.id = session_id or uuid4().hex
        self.state = SessionState.HANDSHAKING
        self.protocol_version: str | None = None
        self.client_info: Implementation | None = None
        self.client_capabilities: dict[str, Any] = {}
        self.last_activity = time.monotonic()
        self._inflight: dict[RequestId, asyncio.Task[Any]] = {}

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, state={self.state.value}, open={len(self._inflight)})"

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    @property
    def is_closing(self) -> bool:
        return self.state is SessionState.CLOSING

    @property
    def open_requests(self) -> frozenset[RequestId]:
        return frozenset(rid for rid, task in self._inflight.items() if not task.done())

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def mark_ready(
        self,
        protocol_version: str,
        client_info: Implementation | None = None,
        capabilities: dict[str, Any] | None = None,
    ) -> None:
        """Record the handshake outcome and accept requests from now on."""
        if self.state is not SessionState.HANDSHAKING:
            msg = f"Cannot complete handshake in state {self.state.value}"
            raise ProtocolError(msg)
        self.protocol_version = protocol_version
        self.client_info = client_info
        self.client_capabilities = capabilities or {}
        self.state = SessionState.READY

    def begin_closing(self) -> None:
        """Stop admitting requests without waiting for in-flight ones."""
        self.state = SessionState.CLOSING

    def start_request(
        self, request_id: RequestId, coro: Coroutine[Any, Any, Any]
    ) -> asyncio.Task[Any]:
        """Run *coro* as the task owning *request_id*.

        Raises:
            SessionTerminatedError: The session is closing.
            ProtocolError: *request_id* is already open on this session.
        """
        if self.state is SessionState.CLOSING:
            coro.close()
            raise SessionTerminatedError(self.id)
        existing = self._inflight.get(request_id)
        if existing is not None and not existing.done():
            coro.close()
            msg = f"Duplicate request id: {request_id!r} is still in flight"
            raise ProtocolError(msg)

        task = asyncio.create_task(coro, name=f"mcp:{self.id}:{request_id}")
        self._inflight[request_id] = task
        task.add_done_callback(lambda t: self._finish(request_id, t))
        return task

    def cancel_request(self, request_id: RequestId) -> bool:
        """Cancel one open request. Returns False if it was not open."""
        task = self._inflight.get(request_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def close(self) -> None:
        """Enter Closing, cancel every open request and wait for them to unwind."""
        self.state = SessionState.CLOSING
        current = asyncio.current_task()
        tasks = [t for t in self._inflight.values() if t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.debug("Session %s: cancelling %d in-flight request(s)", self.id, len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

    def _finish(self, request_id: RequestId, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(request_id) is task:
            del self._inflight[request_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Request %r on session %s failed", request_id, self.id, exc_info=task.exception()
            )
        self.touch()
