"""Subnet discovery of time-attendance terminals.

Every address in the local /24 gets one scan task. A task holds a slot
of the scan's admission gate for its whole lifetime, so no more than
``concurrency`` hosts are being checked at once.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket

from .client import quick_identify
from .errors import ScanError, ZKError
from .models.device import BiometricDevice

logger = logging.getLogger(__name__)

PRIMARY_PORT = 4370
SECONDARY_PORT = 4360
AUXILIARY_PORTS = (80, 8080)

PRIMARY_TIMEOUT = 0.3
AUXILIARY_TIMEOUT = 0.2
MAX_CONCURRENCY = 100

# Any routable address works; no packet is sent
ROUTE_TARGET = ("8.8.8.8", 80)


def get_local_ip() -> str:
    """Return the IPv4 address of the interface used for outbound traffic.

    A UDP socket is "connected" to an external address, which selects a
    route without sending anything, and the bound local address is read back.

    Raises:
        ScanError: If no IPv4 route is available.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(ROUTE_TARGET)
            return sock.getsockname()[0]
    except OSError as e:
        raise ScanError(f"Could not determine local IPv4 address: {e}") from e


def candidate_hosts(local_ip: str) -> list[str]:
    """Return host addresses .1 through .254 of the /24 containing ``local_ip``."""
    try:
        network = ipaddress.IPv4Network(f"{local_ip}/24", strict=False)
    except ValueError as e:
        raise ScanError(f"Invalid local address {local_ip!r}") from e

    base = int(network.network_address)
    return [str(ipaddress.IPv4Address(base + suffix)) for suffix in range(1, 255)]


async def port_open(ip: str, port: int, timeout: float) -> bool:
    """Return True if a TCP connect succeeds within ``timeout``."""
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(ip, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def scan_host(ip: str, gate: asyncio.Semaphore) -> BiometricDevice | None:
    """Check one address; return a device record or None if it is not a terminal."""
    async with gate:
        if await port_open(ip, PRIMARY_PORT, PRIMARY_TIMEOUT):
            port, other = PRIMARY_PORT, SECONDARY_PORT
        elif await port_open(ip, SECONDARY_PORT, PRIMARY_TIMEOUT):
            port, other = SECONDARY_PORT, PRIMARY_PORT
        else:
            return None

        open_ports = {port}
        for extra in (*AUXILIARY_PORTS, other):
            if await port_open(ip, extra, AUXILIARY_TIMEOUT):
                open_ports.add(extra)
        logger.debug("%s answers on %s", ip, sorted(open_ports))

        try:
            identity = await quick_identify(ip, port)
        except ZKError as e:
            logger.info("%s has port %d open but did not identify: %s", ip, port, e)
            return None

    device = BiometricDevice.from_scan(ip, open_ports, identity)
    logger.info(
        "Biometric device detected at %s, ports %s, name %s",
        ip, sorted(open_ports), device.device_name or "(unknown)",
    )
    return device


async def scan_network(
    local_ip: str | None = None,
    concurrency: int = MAX_CONCURRENCY,
) -> list[BiometricDevice]:
    """Scan the local /24 for terminals.

    Args:
        local_ip: Address whose /24 is scanned; detected when omitted.
        concurrency: Maximum number of hosts checked at the same time.

    Returns:
        Devices in the order their checks finished.
    """
    if concurrency < 1:
        raise ValueError(f"Concurrency must be at least 1, got {concurrency}")

    if local_ip is None:
        local_ip = get_local_ip()
    hosts = candidate_hosts(local_ip)
    logger.info("Scanning %s-%s (%d hosts)", hosts[0], hosts[-1], len(hosts))

    gate = asyncio.Semaphore(concurrency)
    tasks = [asyncio.create_task(scan_host(ip, gate)) for ip in hosts]

    devices: list[BiometricDevice] = []
    try:
        for finished in asyncio.as_completed(tasks):
            device = await finished
            if device is not None:
                devices.append(device)
    finally:
        for task in tasks:
            task.cancel()

    if devices:
        logger.info("Found %d biometric device(s) on the network", len(devices))
    else:
        logger.info("No biometric devices detected on this subnet")
    return devices
