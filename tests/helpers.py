"""Shared fakes for protocol tests."""

from __future__ import annotations

import asyncio
import struct
from unittest.mock import AsyncMock, MagicMock

from zkteco_attendance_mcp.protocol.commands import Command
from zkteco_attendance_mcp.protocol.framing import (
    ENVELOPE_SIZE,
    decode,
    encode,
    unwrap_length,
    wrap,
)

SESSION_ID = 0x1234


def wire_frame(command: int, payload: bytes = b"", session_id: int = SESSION_ID, reply_id: int = 0) -> bytes:
    """A frame as it appears on the socket, envelope included."""
    return wrap(encode(session_id, command, reply_id, payload))


def user_payload(name: str) -> bytes:
    """A 72-byte user record with ``name`` at offset 8."""
    buf = bytearray(72)
    raw = name.encode("utf-8")[:32]
    buf[8 : 8 + len(raw)] = raw
    return bytes(buf)


def attendance_payload(user_id: int, seconds: int, status: int, punch: int = 0) -> bytes:
    """A 16-byte attendance record."""
    return struct.pack("<IIBB", user_id, seconds, status, punch) + b"\x00" * 6


def stream_pair(data: bytes) -> tuple[asyncio.StreamReader, MagicMock]:
    """A reader pre-fed with ``data`` and a writer mock recording writes."""
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    writer = MagicMock()
    writer.drain = AsyncMock()
    writer.wait_closed = AsyncMock()
    return reader, writer


def written_frames(writer: MagicMock) -> list[bytes]:
    """Frames (envelope stripped) passed to ``writer.write``."""
    return [call.args[0][ENVELOPE_SIZE:] for call in writer.write.call_args_list]


class FakeSession:
    """Stands in for ProtocolSession, replaying a scripted reply stream."""

    def __init__(self, replies: list[tuple[int, bytes]]) -> None:
        self._replies = list(replies)
        self.sent: list[tuple[int, bytes]] = []
        self.lock = asyncio.Lock()
        self.connected = True
        self.session_id = SESSION_ID
        self.closed = False

    async def send(self, command: int, payload: bytes = b"") -> None:
        self.sent.append((int(command), payload))

    async def receive(self) -> tuple[int, bytes]:
        return self._replies.pop(0)

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeTerminal:
    """Loopback TCP server speaking the terminal protocol.

    ``replies`` maps a request command to the frames sent back, in order.
    Commands without an entry get ACK_ERROR. CONNECT is always accepted.

    Usage::

        async with FakeTerminal({Command.GET_USER: [...]}) as (host, port):
            ...
    """

    def __init__(self, replies: dict[int, list[tuple[int, bytes]]] | None = None, options: dict[str, str] | None = None) -> None:
        self._replies = replies or {}
        self._options = options or {}
        self._server: asyncio.AbstractServer | None = None
        self._finished: list[asyncio.Event] = []
        self.requests: list[tuple[int, bytes]] = []

    async def __aenter__(self) -> tuple[str, int]:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        host, port = self._server.sockets[0].getsockname()[:2]
        return host, port

    async def __aexit__(self, *exc_info) -> None:
        for finished in self._finished:
            await asyncio.wait_for(finished.wait(), timeout=2.0)
        self._server.close()
        await self._server.wait_closed()

    def _answer(self, command: int, payload: bytes) -> list[tuple[int, bytes]]:
        if command == Command.CONNECT:
            return [(Command.ACK_OK, b"")]
        if command == Command.OPTIONS_RRQ:
            key = payload.rstrip(b"\x00").decode("ascii")
            if key in self._options:
                return [(Command.ACK_OK, f"{key}={self._options[key]}\x00".encode())]
            return [(Command.ACK_ERROR, b"")]
        return self._replies.get(command, [(Command.ACK_ERROR, b"")])

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        finished = asyncio.Event()
        self._finished.append(finished)
        try:
            while True:
                envelope = await reader.readexactly(ENVELOPE_SIZE)
                frame = await reader.readexactly(unwrap_length(envelope))
                command, payload = decode(frame)
                self.requests.append((command, payload))
                if command == Command.EXIT:
                    break
                for reply, data in self._answer(command, payload):
                    writer.write(wire_frame(reply, data))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()
            finished.set()
