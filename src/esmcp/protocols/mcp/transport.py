"""MCP transports — the stdio stream adapter and its protocol.

Each transport satisfies the :class:`MCPTransport` protocol, providing
``receive``, ``send`` and ``close``. The server depends only on this
interface; the HTTP variant lives in :mod:`esmcp.protocols.mcp.http` because
its request/response lifecycle does not fit a single long-lived stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Protocol, runtime_checkable

from esmcp.protocols.errors import FramingError, MalformedFrameError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAME_BYTES = 4 * 1024 * 1024


@runtime_checkable
class MCPTransport(Protocol):
    """Abstract stream transport for MCP JSON-RPC communication."""

    async def receive(self) -> Any | None: ...
    async def send(self, data: dict[str, Any]) -> None: ...
    async def close(self) -> None: ...


class StdioTransport:
    """Serves MCP over a pair of byte streams, usually the process stdin/stdout.

    Frames are newline-delimited UTF-8 JSON. ``receive`` returns the decoded
    value of the next non-blank line, or ``None`` at end of stream.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._max_frame_bytes = max_frame_bytes
        self._write_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def open(cls, *, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES) -> StdioTransport:
        """Attach to the process stdin/stdout pipes."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=max_frame_bytes)
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        write_transport, write_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, sys.stdout
        )
        writer = asyncio.StreamWriter(write_transport, write_protocol, reader, loop)
        return cls(reader, writer, max_frame_bytes=max_frame_bytes)

    async def receive(self) -> Any | None:
        """Read and decode the next frame.

        Raises:
            MalformedFrameError: The line is not valid UTF-8 JSON. The stream
                is still usable.
            FramingError: The line exceeds the frame limit or the stream ended
                mid-frame. The stream cannot be resynchronized.
        """
        while True:
            try:
                line = await self._reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                if exc.partial.strip():
                    msg = f"truncated frame at end of stream ({len(exc.partial)} bytes)"
                    raise FramingError(msg) from exc
                return None
            except asyncio.LimitOverrunError as exc:
                msg = f"frame exceeds {self._max_frame_bytes} bytes"
                raise FramingError(msg) from exc

            if len(line) > self._max_frame_bytes:
                msg = f"frame exceeds {self._max_frame_bytes} bytes"
                raise FramingError(msg)

            line = line.strip()
            if not line:
                continue
            try:
                return json.loads(line.decode("utf-8"))
            except UnicodeDecodeError as exc:
                raise MalformedFrameError(f"frame is not valid UTF-8: {exc.reason}") from exc
            except json.JSONDecodeError as exc:
                raise MalformedFrameError(f"invalid JSON: {exc.msg}") from exc

    async def send(self, data: dict[str, Any]) -> None:
        """Write one JSON line. Concurrent senders never interleave."""
        if self._closed:
            msg = "Transport closed"
            raise TransportError(msg)
        line = json.dumps(data, separators=(",", ":"), default=str) + "\n"
        async with self._write_lock:
            try:
                self._writer.write(line.encode())
                await self._writer.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise TransportError(f"output stream closed: {exc}") from exc

    async def close(self) -> None:
        """Close the output stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.debug("Output stream already closed: %s", exc)
