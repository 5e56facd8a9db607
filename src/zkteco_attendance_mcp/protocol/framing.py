"""Frame builder and parser for the terminal's binary TCP protocol.

Frame layout::

    +--------+------------+---------+----------+------------------+----------+
    | Marker | Session ID | Command | Reply ID |     Payload      | Checksum |
    | 2 bytes|  2 bytes   | 2 bytes | 2 bytes  |  variable length |  2 bytes |
    +--------+------------+---------+----------+------------------+----------+

- Marker: 0x5050, little-endian like every other field
- Checksum: unsigned sum of every preceding byte, truncated to 16 bits

On TCP each frame travels inside an 8-byte envelope (see :func:`wrap`)
whose length field tells the reader how many frame bytes follow.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from ..errors import MalformedFrame

START_MARKER = 0x5050
HEADER_SIZE = 8
CHECKSUM_SIZE = 2

ENVELOPE_MAGIC_1 = 0x5050
ENVELOPE_MAGIC_2 = 0x7D82
ENVELOPE_SIZE = 8

_HEADER = struct.Struct("<HHHH")
_CHECKSUM = struct.Struct("<H")
_ENVELOPE = struct.Struct("<HHI")


@dataclass
class Frame:
    """A parsed protocol frame."""

    session_id: int
    command: int
    reply_id: int
    payload: bytes
    checksum: int | None = None

    def __repr__(self) -> str:
        return (
            f"Frame(command={self.command}, session=0x{self.session_id:04X}, "
            f"reply={self.reply_id}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def checksum(data: bytes) -> int:
    """Return the 16-bit additive checksum of ``data``."""
    return sum(data) & 0xFFFF


def encode(session_id: int, command: int, reply_id: int, payload: bytes = b"") -> bytes:
    """Build a frame ready to be wrapped and written to the socket.

    Args:
        session_id: Session assigned by the device (0 before handshake).
        command: 16-bit command code.
        reply_id: Current reply counter.
        payload: Command-specific payload bytes.
    """
    body = _HEADER.pack(
        START_MARKER,
        session_id & 0xFFFF,
        command & 0xFFFF,
        reply_id & 0xFFFF,
    ) + payload
    return body + _CHECKSUM.pack(checksum(body))


def parse_frame(data: bytes) -> Frame:
    """Parse a complete frame into its header fields and payload.

    The payload is everything between the header and the trailing checksum.
    A frame too short to carry a checksum is treated as header plus payload.

    Raises:
        MalformedFrame: If fewer than 8 header bytes are available.
    """
    if len(data) < HEADER_SIZE:
        raise MalformedFrame(
            f"Frame needs at least {HEADER_SIZE} bytes, got {len(data)}"
        )

    _marker, session_id, command, reply_id = _HEADER.unpack_from(data)

    if len(data) >= HEADER_SIZE + CHECKSUM_SIZE:
        payload = bytes(data[HEADER_SIZE:-CHECKSUM_SIZE])
        (received,) = _CHECKSUM.unpack_from(data, len(data) - CHECKSUM_SIZE)
    else:
        payload = bytes(data[HEADER_SIZE:])
        received = None

    return Frame(
        session_id=session_id,
        command=command,
        reply_id=reply_id,
        payload=payload,
        checksum=received,
    )


def decode(data: bytes) -> tuple[int, bytes]:
    """Decode a frame into ``(command, payload)``."""
    frame = parse_frame(data)
    return frame.command, frame.payload


def verify_checksum(data: bytes) -> bool:
    """Return True if the trailing checksum matches the frame contents."""
    if len(data) < HEADER_SIZE + CHECKSUM_SIZE:
        return False
    (received,) = _CHECKSUM.unpack_from(data, len(data) - CHECKSUM_SIZE)
    return received == checksum(data[:-CHECKSUM_SIZE])


def wrap(frame: bytes) -> bytes:
    """Prefix a frame with the TCP envelope carrying its length."""
    return _ENVELOPE.pack(ENVELOPE_MAGIC_1, ENVELOPE_MAGIC_2, len(frame)) + frame


def unwrap_length(envelope: bytes) -> int:
    """Return the frame length declared by an 8-byte TCP envelope.

    Raises:
        MalformedFrame: If the envelope is short or its magic is wrong.
    """
    if len(envelope) < ENVELOPE_SIZE:
        raise MalformedFrame(
            f"Envelope needs {ENVELOPE_SIZE} bytes, got {len(envelope)}"
        )
    magic_1, magic_2, length = _ENVELOPE.unpack_from(envelope)
    if (magic_1, magic_2) != (ENVELOPE_MAGIC_1, ENVELOPE_MAGIC_2):
        raise MalformedFrame(
            f"Bad envelope magic 0x{magic_1:04X} 0x{magic_2:04X}"
        )
    return length
