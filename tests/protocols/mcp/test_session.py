"""Tests for Session state and request ownership."""

from __future__ import annotations

import asyncio

import pytest

from esmcp.protocols.errors import ProtocolError, SessionTerminatedError
from esmcp.protocols.mcp.models import Implementation
from esmcp.protocols.mcp.session import Session, SessionState


async def _sleep_forever() -> None:
    await asyncio.Event().wait()


async def _value(value: int) -> int:
    return value


class TestStateMachine:
    def test_starts_handshaking(self) -> None:
        session = Session()
        assert session.state is SessionState.HANDSHAKING
        assert not session.is_ready
        assert len(session.id) == 32

    def test_explicit_id(self) -> None:
        assert Session("abc").id == "abc"

    def test_mark_ready(self) -> None:
        session = Session()
        info = Implementation(name="client", version="2")
        session.mark_ready("2025-03-26", info, {"roots": {}})
        assert session.is_ready
        assert session.protocol_version == "2025-03-26"
        assert session.client_info == info
        assert session.client_capabilities == {"roots": {}}

    def test_mark_ready_twice_fails(self) -> None:
        session = Session()
        session.mark_ready("2025-03-26")
        with pytest.raises(ProtocolError):
            session.mark_ready("2025-03-26")

    def test_closing_is_terminal(self) -> None:
        session = Session()
        session.begin_closing()
        assert session.is_closing
        with pytest.raises(ProtocolError):
            session.mark_ready("2025-03-26")


class TestRequests:
    async def test_task_result_and_cleanup(self) -> None:
        session = Session()
        task = session.start_request(1, _value(42))
        assert await task == 42
        await asyncio.sleep(0)
        assert session.open_requests == frozenset()

    async def test_duplicate_open_id_rejected(self) -> None:
        session = Session()
        session.start_request("a", _sleep_forever())
        with pytest.raises(ProtocolError, match="Duplicate request id"):
            session.start_request("a", _value(1))
        assert session.open_requests == frozenset({"a"})
        await session.close()

    async def test_id_reusable_after_completion(self) -> None:
        session = Session()
        await session.start_request(1, _value(1))
        await asyncio.sleep(0)
        assert await session.start_request(1, _value(2)) == 2

    async def test_cancel_request(self) -> None:
        session = Session()
        task = session.start_request(5, _sleep_forever())
        await asyncio.sleep(0)
        assert session.cancel_request(5) is True
        with pytest.raises(asyncio.CancelledError):
            await task
        assert session.cancel_request(5) is False
        assert session.cancel_request("unknown") is False

    async def test_close_cancels_everything(self) -> None:
        session = Session()
        tasks = [session.start_request(i, _sleep_forever()) for i in range(3)]
        await asyncio.sleep(0)

        await session.close()

        assert session.is_closing
        assert all(t.cancelled() for t in tasks)
        assert session.open_requests == frozenset()

    async def test_no_requests_after_close(self) -> None:
        session = Session()
        await session.close()
        coro = _value(1)
        with pytest.raises(SessionTerminatedError):
            session.start_request(1, coro)
        # The rejected coroutine was closed, not left pending.
        assert coro.cr_frame is None

    async def test_failed_task_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        async def fail() -> None:
            raise RuntimeError("bug")

        session = Session()
        task = session.start_request(9, fail())
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)
        assert "Request 9" in caplog.text

    async def test_touch_updates_activity(self) -> None:
        session = Session()
        session.last_activity = 0.0
        session.touch()
        assert session.last_activity > 0.0
