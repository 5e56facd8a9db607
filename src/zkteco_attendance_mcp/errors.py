"""Exception hierarchy for terminal communication and discovery."""

from __future__ import annotations


class ZKError(Exception):
    """Base class for every error raised by this package."""


class ConnectError(ZKError, ConnectionError):
    """The TCP connection could not be established (refused, unreachable, timed out)."""


class HandshakeFailed(ZKError):
    """The device answered the CONNECT command with something other than ACK_OK."""


class MalformedFrame(ZKError, ValueError):
    """Not enough bytes to decode a frame header."""


class ProtocolIOError(ZKError, OSError):
    """A read or write on an established session failed or timed out."""


class DeviceError(ZKError):
    """The device explicitly rejected a request with ACK_ERROR."""

    def __init__(self, message: str, command: int | None = None) -> None:
        super().__init__(message)
        self.command = command


class ScanError(ZKError):
    """The local network could not be determined for a scan."""
