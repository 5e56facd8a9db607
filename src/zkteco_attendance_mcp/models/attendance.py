"""Attendance log record model and punch-state labels."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone

STATUS_LABELS: dict[int, str] = {
    0: "Check In",
    1: "Check Out",
    2: "Break Out",
    3: "Break In",
    4: "OT In",
    5: "OT Out",
}

UNKNOWN_EVENT = "Unknown"


def event_label(status: int) -> str:
    """Return the human label for a raw status code."""
    return STATUS_LABELS.get(status, UNKNOWN_EVENT)


def unknown_user_name(user_id: int) -> str:
    return f"Unknown (ID: {user_id})"


def local_time_from_epoch(seconds: int) -> datetime:
    """Convert UTC epoch seconds to an aware local datetime.

    Values the platform cannot represent fall back to the current local
    time so one bad record does not abort a whole download.
    """
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone()
    except (OverflowError, OSError, ValueError):
        return datetime.now().astimezone()


@dataclass
class AttendanceRecord:
    """One punch read from the device attendance log."""

    user_id: int
    user_name: str
    timestamp: str
    status: int
    punch: int
    date: str
    time: str
    event: str

    @classmethod
    def from_raw(
        cls,
        user_id: int,
        epoch_seconds: int,
        status: int,
        punch: int,
        names: dict[int, str],
    ) -> AttendanceRecord:
        moment = local_time_from_epoch(epoch_seconds)
        return cls(
            user_id=user_id,
            user_name=names.get(user_id, unknown_user_name(user_id)),
            timestamp=moment.isoformat(),
            status=status,
            punch=punch,
            date=moment.strftime("%Y-%m-%d"),
            time=moment.strftime("%H:%M:%S"),
            event=event_label(status),
        )

    def to_dict(self) -> dict:
        return asdict(self)
