"""Data models for users, attendance records, and discovered devices."""

from .user import User
from .attendance import AttendanceRecord, STATUS_LABELS, event_label
from .device import BiometricDevice, DeviceIdentity
