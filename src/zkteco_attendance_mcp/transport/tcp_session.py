"""TCP session with a time-attendance terminal.

One :class:`ProtocolSession` owns one TCP connection, the session id the
device assigns during the handshake, and the reply counter that is bumped
for every frame sent.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from ..errors import ConnectError, HandshakeFailed, MalformedFrame, ProtocolIOError
from ..protocol.commands import Command
from ..protocol.framing import (
    Frame,
    ENVELOPE_SIZE,
    HEADER_SIZE,
    encode,
    parse_frame,
    unwrap_length,
    verify_checksum,
    wrap,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4370
DEFAULT_TIMEOUT = 30.0
MAX_FRAME_SIZE = 0xFFFF + HEADER_SIZE


class SessionState(Enum):
    """Lifecycle of a session; DISCONNECTED is terminal."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ESTABLISHED = "established"


class ProtocolSession:
    """Frame-level exchange over one TCP connection.

    Usage::

        session = ProtocolSession()
        await session.connect("192.168.1.201", 4370)
        await session.handshake()
        await session.send(Command.GET_USER)
        command, payload = await session.receive()
        await session.close()

    A session serves one logical operation at a time; the device has no
    pipelining and answers exactly one outstanding command.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._state = SessionState.DISCONNECTED
        self._peer = ""
        self.session_id = 0
        self.reply_id = 0
        self.lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def connect(self, host: str, port: int = DEFAULT_PORT, timeout: float | None = None) -> None:
        """Open the TCP connection.

        Args:
            host: Device IPv4 address or hostname.
            port: Device TCP port.
            timeout: Connect timeout in seconds; defaults to the session timeout.

        Raises:
            ConnectError: If the connection is refused, unreachable, or times out.
        """
        if self._writer is not None:
            raise ConnectError(f"Session already connected to {self._peer}")

        self._state = SessionState.CONNECTING
        self._peer = f"{host}:{port}"
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._timeout if timeout is None else timeout,
            )
        except asyncio.TimeoutError as e:
            self._state = SessionState.DISCONNECTED
            raise ConnectError(f"Timed out connecting to {self._peer}") from e
        except OSError as e:
            self._state = SessionState.DISCONNECTED
            raise ConnectError(f"Could not connect to {self._peer}: {e}") from e

        logger.debug("TCP connected to %s", self._peer)

    async def handshake(self) -> int:
        """Perform the CONNECT exchange and record the assigned session id.

        Returns:
            The session id assigned by the device.

        Raises:
            HandshakeFailed: If the reply is not ACK_OK or is malformed.
        """
        self.session_id = 0
        self.reply_id = 0
        await self.send(Command.CONNECT)

        try:
            frame = await self._receive_frame()
        except MalformedFrame as e:
            raise HandshakeFailed(f"Malformed handshake reply from {self._peer}: {e}") from e

        if frame.command != Command.ACK_OK:
            raise HandshakeFailed(
                f"Device {self._peer} answered CONNECT with "
                f"{Command.from_code(frame.command).name} ({frame.command})"
            )

        self.session_id = frame.session_id
        self.reply_id = 1
        self._state = SessionState.ESTABLISHED
        logger.info("Session 0x%04X established with %s", self.session_id, self._peer)
        return self.session_id

    async def send(self, command: int, payload: bytes = b"") -> None:
        """Encode and write one frame, then advance the reply counter.

        Raises:
            ProtocolIOError: If not connected or the write fails.
        """
        writer = self._require_writer()
        frame = encode(self.session_id, int(command), self.reply_id, payload)
        try:
            writer.write(wrap(frame))
            await asyncio.wait_for(writer.drain(), timeout=self._timeout)
        except (OSError, asyncio.TimeoutError) as e:
            self._abort()
            raise ProtocolIOError(f"Write to {self._peer} failed: {e}") from e

        logger.debug(
            "-> %s command=%s reply=%d len=%d",
            self._peer, int(command), self.reply_id, len(payload),
        )
        self.reply_id = (self.reply_id + 1) & 0xFFFF

    async def receive(self) -> tuple[int, bytes]:
        """Read one frame and return ``(command, payload)``.

        Raises:
            ProtocolIOError: On timeout, EOF, or short read.
            MalformedFrame: If the envelope or frame header is invalid.

        Either failure drops the connection.
        """
        frame = await self._receive_frame()
        return frame.command, frame.payload

    async def close(self) -> None:
        """Send EXIT without waiting for an acknowledgement and drop the connection."""
        writer = self._writer
        if writer is None:
            self._state = SessionState.DISCONNECTED
            return

        try:
            writer.write(wrap(encode(self.session_id, Command.EXIT, self.reply_id)))
            self.reply_id = (self.reply_id + 1) & 0xFFFF
            writer.close()
            await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("Error closing session with %s: %s", self._peer, e)
        finally:
            self._reader = None
            self._writer = None
            self._state = SessionState.DISCONNECTED
            logger.info("Disconnected from %s", self._peer)

    async def _receive_frame(self) -> Frame:
        try:
            return await self._read_frame()
        except (ProtocolIOError, MalformedFrame):
            self._abort()
            raise

    async def _read_frame(self) -> Frame:
        reader = self._require_reader()
        envelope = await self._read_exactly(reader, ENVELOPE_SIZE)
        length = unwrap_length(envelope)
        if length < HEADER_SIZE or length > MAX_FRAME_SIZE:
            raise MalformedFrame(f"Declared frame length {length} out of range")

        data = await self._read_exactly(reader, length)
        if not verify_checksum(data):
            logger.debug("Checksum mismatch in frame from %s", self._peer)

        frame = parse_frame(data)
        logger.debug(
            "<- %s command=%d reply=%d len=%d",
            self._peer, frame.command, frame.reply_id, len(frame.payload),
        )
        return frame

    def _abort(self) -> None:
        """Drop the connection without EXIT after a failed exchange.

        Replies to the failed command may still be in flight, so the
        session cannot carry another command.
        """
        writer = self._writer
        self._reader = None
        self._writer = None
        self._state = SessionState.DISCONNECTED
        if writer is not None:
            writer.close()
            logger.warning("Dropped session with %s after I/O failure", self._peer)

    async def _read_exactly(self, reader: asyncio.StreamReader, size: int) -> bytes:
        try:
            return await asyncio.wait_for(reader.readexactly(size), timeout=self._timeout)
        except asyncio.IncompleteReadError as e:
            raise ProtocolIOError(
                f"Short read from {self._peer}: expected {size} bytes, "
                f"got {len(e.partial)}"
            ) from e
        except asyncio.TimeoutError as e:
            raise ProtocolIOError(f"Timed out reading from {self._peer}") from e
        except OSError as e:
            raise ProtocolIOError(f"Read from {self._peer} failed: {e}") from e

    def _require_reader(self) -> asyncio.StreamReader:
        if self._reader is None:
            raise ProtocolIOError("Session is not connected")
        return self._reader

    def _require_writer(self) -> asyncio.StreamWriter:
        if self._writer is None:
            raise ProtocolIOError("Session is not connected")
        return self._writer
