"""MCP server entry point for ZKTeco-compatible time-attendance terminals.

Exposes subnet discovery and attendance retrieval as tools and resources
via the Model Context Protocol using the official Python MCP SDK with
stdio transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import DeviceClient, fetch_attendance as fetch_device_attendance, quick_identify
from .errors import ZKError
from .models.attendance import STATUS_LABELS
from .models.device import BiometricDevice
from .models.user import User
from .scanner import MAX_CONCURRENCY, scan_network as scan_subnet
from .transport.tcp_session import DEFAULT_PORT

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "zkteco-attendance",
    instructions="Discover time-attendance terminals and read their users and attendance logs",
)

# Global connection state
_client: DeviceClient | None = None
_users: list[User] = []
_last_scan: list[BiometricDevice] = []


def _get_client() -> DeviceClient:
    """Get the active device client, raising if not connected."""
    if _client is None or not _client.connected:
        raise RuntimeError(
            "Not connected to a device. Use the 'connect' tool first."
        )
    return _client


# ─── DISCOVERY TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def scan_network(
    local_ip: str | None = None,
    concurrency: int = MAX_CONCURRENCY,
) -> dict[str, Any]:
    """Scan the local /24 subnet for biometric attendance terminals.

    Hosts answering on port 4370 or 4360 are identified with a short
    handshake to read device name, firmware and serial number.

    Args:
        local_ip: Address whose /24 is scanned (auto-detected if omitted).
        concurrency: Maximum hosts checked simultaneously (default 100).
    """
    global _last_scan
    try:
        devices = await scan_subnet(local_ip=local_ip, concurrency=concurrency)
    except (ZKError, ValueError) as e:
        return {"error": str(e)}

    _last_scan = devices
    return {
        "devices": [d.to_dict() for d in devices],
        "count": len(devices),
    }


@mcp.tool()
async def get_device_info(ip: str, port: int = DEFAULT_PORT) -> dict[str, Any]:
    """Read device name, firmware version and serial number from a terminal.

    Args:
        ip: Device IPv4 address.
        port: Device TCP port (default 4370).
    """
    try:
        identity = await quick_identify(ip, port)
    except ZKError as e:
        return {"error": str(e)}

    if identity is None:
        return {"ip": ip, "port": port, "message": "Device exposes no identification"}
    return {
        "ip": ip,
        "port": port,
        "device_name": identity.device_name,
        "firmware_version": identity.firmware_version,
        "serial_number": identity.serial_number,
    }


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(ip: str, port: int = DEFAULT_PORT) -> dict[str, Any]:
    """Open a session with a terminal.

    Args:
        ip: Device IPv4 address.
        port: Device TCP port (default 4370).
    """
    global _client, _users
    if _client is not None and _client.connected:
        if (_client.ip, _client.port) == (ip, port):
            return {"connected": True, "message": "Already connected", "ip": ip}
        await _client.disconnect()

    client = DeviceClient(ip, port)
    try:
        session_id = await client.connect()
    except ZKError as e:
        return {"connected": False, "error": str(e)}

    _client = client
    _users = []
    return {"connected": True, "ip": ip, "port": port, "session_id": session_id}


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the session with the connected terminal."""
    global _client, _users
    if _client is None:
        return {"disconnected": True}
    await _client.disconnect()
    _client = None
    _users = []
    return {"disconnected": True}


# ─── DATA TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
async def list_users() -> dict[str, Any]:
    """List users enrolled on the connected terminal."""
    global _users
    client = _get_client()
    try:
        _users = await client.list_users()
    except ZKError as e:
        return {"error": str(e)}

    return {
        "users": [u.to_dict() for u in _users],
        "count": len(_users),
    }


@mcp.tool()
async def get_attendance() -> dict[str, Any]:
    """Read the attendance log from the connected terminal.

    User names are resolved from the last ``list_users`` call; users are
    read first if that has not happened in this session.
    """
    global _users
    client = _get_client()
    try:
        if not _users:
            _users = await client.list_users()
        records = await client.get_attendance(_users)
    except ZKError as e:
        return {"error": str(e)}

    return {
        "records": [r.to_dict() for r in records],
        "count": len(records),
    }


@mcp.tool()
async def fetch_attendance(ip: str, port: int = DEFAULT_PORT) -> dict[str, Any]:
    """Connect, read users and attendance, and disconnect in one step.

    Args:
        ip: Device IPv4 address.
        port: Device TCP port (default 4370).
    """
    try:
        records = await fetch_device_attendance(ip, port)
    except ZKError as e:
        return {"error": str(e)}

    return {
        "ip": ip,
        "records": [r.to_dict() for r in records],
        "count": len(records),
    }


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("zkteco://device/status")
def resource_device_status() -> str:
    """Connection state of the current session."""
    if _client is None or not _client.connected:
        return json.dumps({"connected": False})

    return json.dumps({
        "connected": True,
        "ip": _client.ip,
        "port": _client.port,
        "session_id": _client.session.session_id,
        "users_cached": len(_users),
    })


@mcp.resource("zkteco://scan/last")
def resource_last_scan() -> str:
    """Devices found by the most recent scan."""
    return json.dumps({"devices": [d.to_dict() for d in _last_scan]})


@mcp.resource("zkteco://catalog/events")
def resource_event_catalog() -> str:
    """Punch status codes and their labels."""
    events = [{"status": code, "event": label} for code, label in STATUS_LABELS.items()]
    return json.dumps({"events": events})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
