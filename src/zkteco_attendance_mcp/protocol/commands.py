"""Command codes and payload builders.

The same 16-bit code space is used for host-to-device requests and for
device-to-host replies.
"""

from __future__ import annotations

from enum import IntEnum


class Command(IntEnum):
    """Command and reply codes."""

    UNKNOWN = -1

    GET_USER = 8
    OPTIONS_RRQ = 11
    ATTLOG_RRQ = 13
    CONNECT = 1000
    EXIT = 1001
    ENABLE_DEVICE = 1002
    DISABLE_DEVICE = 1003
    GET_VERSION = 1100
    PREPARE_DATA = 1500
    DATA = 1501
    ACK_OK = 5000
    ACK_ERROR = 5001
    ACK_DATA = 5002
    ACK_RETRY = 5003
    ACK_REPEAT = 5004
    ACK_UNAUTH = 5005

    @classmethod
    def from_code(cls, code: int) -> Command:
        """Map a raw wire code to a member, or ``UNKNOWN`` if unrecognized."""
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


# Option keys understood by OPTIONS_RRQ
OPTION_DEVICE_NAME = "~DeviceName"
OPTION_SERIAL_NUMBER = "~SerialNumber"


def build_option_request(key: str) -> bytes:
    """Build the OPTIONS_RRQ payload for a single option key.

    Args:
        key: Option name, e.g. ``"~DeviceName"``.
    """
    if not key or "\x00" in key:
        raise ValueError(f"Invalid option key {key!r}")
    return key.encode("ascii") + b"\x00"
