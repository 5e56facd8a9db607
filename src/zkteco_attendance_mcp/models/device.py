"""Discovery result models."""

from __future__ import annotations

from dataclasses import dataclass

UNKNOWN_MAC = "Unknown"


@dataclass(frozen=True)
class DeviceIdentity:
    """Identification strings a terminal exposes through its option query.

    Empty strings are stored as None.
    """

    device_name: str | None = None
    firmware_version: str | None = None
    serial_number: str | None = None

    def __post_init__(self) -> None:
        for name in ("device_name", "firmware_version", "serial_number"):
            value = getattr(self, name)
            if value is not None and not value.strip():
                object.__setattr__(self, name, None)

    @property
    def empty(self) -> bool:
        return not (self.device_name or self.firmware_version or self.serial_number)


@dataclass(frozen=True)
class BiometricDevice:
    """A terminal found by a subnet scan."""

    ip: str
    open_ports: frozenset[int]
    mac: str = UNKNOWN_MAC
    device_name: str | None = None
    firmware_version: str | None = None
    serial_number: str | None = None

    @classmethod
    def from_scan(
        cls,
        ip: str,
        open_ports: set[int],
        identity: DeviceIdentity | None = None,
    ) -> BiometricDevice:
        identity = identity or DeviceIdentity()
        return cls(
            ip=ip,
            open_ports=frozenset(open_ports),
            device_name=identity.device_name,
            firmware_version=identity.firmware_version,
            serial_number=identity.serial_number,
        )

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "mac": self.mac,
            "open_ports": sorted(self.open_ports),
            "device_name": self.device_name,
            "firmware_version": self.firmware_version,
            "serial_number": self.serial_number,
        }
