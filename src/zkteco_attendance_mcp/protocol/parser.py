"""Payload parsing for streamed user and attendance records."""

from __future__ import annotations

import struct

from ..models.attendance import AttendanceRecord
from ..models.user import User

USER_RECORD_MIN = 72
USER_NAME_OFFSET = 8
USER_NAME_SIZE = 32

ATTENDANCE_RECORD_MIN = 16
_ATTENDANCE = struct.Struct("<IIBB")


def _trim(field: bytes) -> str:
    return field.split(b"\x00", 1)[0].decode("utf-8", errors="replace").strip()


def parse_user(payload: bytes, uid: int) -> User | None:
    """Parse one user DATA payload.

    The name is a 32-byte null-padded field at offset 8. Payloads shorter
    than a full record are not users.

    Args:
        payload: DATA frame payload.
        uid: Arrival rank to assign.
    """
    if len(payload) < USER_RECORD_MIN:
        return None

    name = _trim(payload[USER_NAME_OFFSET : USER_NAME_OFFSET + USER_NAME_SIZE])
    return User(uid=uid, name=name or f"User {uid}")


def parse_attendance(payload: bytes, names: dict[int, str]) -> AttendanceRecord | None:
    """Parse one attendance DATA payload.

    Layout: user id (u32), epoch seconds (u32), status (u8), punch (u8);
    the remaining bytes are not used.
    """
    if len(payload) < ATTENDANCE_RECORD_MIN:
        return None

    user_id, seconds, status, punch = _ATTENDANCE.unpack_from(payload)
    return AttendanceRecord.from_raw(user_id, seconds, status, punch, names)


def parse_option(payload: bytes, key: str) -> str | None:
    """Extract the value from an OPTIONS_RRQ reply of the form ``key=value\\0``."""
    text = _trim(payload)
    if not text:
        return None
    name, sep, value = text.partition("=")
    if not sep:
        return None
    if name.strip() != key:
        return None
    return value.strip() or None


def parse_version(payload: bytes) -> str | None:
    """Extract the firmware string from a GET_VERSION reply."""
    return _trim(payload) or None
