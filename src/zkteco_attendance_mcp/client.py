"""Application-level operations against a time-attendance terminal.

Every operation sends one command and then consumes the streamed reply
until ACK_OK or ACK_ERROR. Frames with any other command are skipped so
that status chatter interleaved with data does not break a download.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar

from .errors import ConnectError, DeviceError, MalformedFrame, ProtocolIOError
from .models.attendance import AttendanceRecord
from .models.device import DeviceIdentity
from .models.user import User
from .protocol.commands import (
    OPTION_DEVICE_NAME,
    OPTION_SERIAL_NUMBER,
    Command,
    build_option_request,
)
from .protocol.parser import parse_attendance, parse_option, parse_user, parse_version
from .transport.tcp_session import DEFAULT_PORT, DEFAULT_TIMEOUT, ProtocolSession

logger = logging.getLogger(__name__)

IDENTIFY_TIMEOUT = 1.5
QUERY_TIMEOUT = 0.5

T = TypeVar("T")


class DeviceClient:
    """Client for one terminal.

    Usage::

        async with DeviceClient("192.168.1.201") as client:
            users = await client.list_users()
            records = await client.get_attendance(users)
    """

    def __init__(
        self,
        ip: str,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        session: ProtocolSession | None = None,
    ) -> None:
        self.ip = ip
        self.port = port
        self._session = session or ProtocolSession(timeout=timeout)

    @property
    def session(self) -> ProtocolSession:
        return self._session

    @property
    def connected(self) -> bool:
        return self._session.connected

    async def __aenter__(self) -> DeviceClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    async def connect(self) -> int:
        """Open the TCP connection and perform the handshake.

        Returns:
            The session id assigned by the device.

        Raises:
            ConnectError: If the TCP connection fails.
            HandshakeFailed: If the device rejects the session.
        """
        await self._session.connect(self.ip, self.port)
        try:
            return await self._session.handshake()
        except BaseException:
            await self._session.close()
            raise

    async def disconnect(self) -> None:
        """End the exchange and release the connection."""
        await self._session.close()

    async def list_users(self) -> list[User]:
        """Enumerate enrolled users.

        ``uid`` is assigned by arrival order starting at 1.

        Raises:
            DeviceError: If the device answers ACK_ERROR.
        """
        users: list[User] = []

        def collect(payload: bytes) -> None:
            user = parse_user(payload, uid=len(users) + 1)
            if user is not None:
                users.append(user)

        await self._stream(Command.GET_USER, collect)
        logger.info("Read %d users from %s", len(users), self.ip)
        return users

    async def get_attendance(self, users: list[User]) -> list[AttendanceRecord]:
        """Read the attendance log, resolving names from ``users``.

        Raises:
            DeviceError: If the device answers ACK_ERROR.
        """
        names = {user.uid: user.name for user in users}
        records: list[AttendanceRecord] = []

        def collect(payload: bytes) -> None:
            record = parse_attendance(payload, names)
            if record is not None:
                records.append(record)

        await self._stream(Command.ATTLOG_RRQ, collect)
        logger.info("Read %d attendance records from %s", len(records), self.ip)
        return records

    async def read_identity(self, query_timeout: float | None = None) -> DeviceIdentity:
        """Query device name, firmware version and serial number.

        Queries the device does not support leave the field empty. A query
        that gets no answer within ``query_timeout`` (or fails on the wire)
        also leaves its field empty; the session is dropped and the
        remaining queries are skipped.
        """
        name = await self._query(
            Command.OPTIONS_RRQ,
            build_option_request(OPTION_DEVICE_NAME),
            lambda p: parse_option(p, OPTION_DEVICE_NAME),
            query_timeout,
        )
        firmware = await self._query(Command.GET_VERSION, b"", parse_version, query_timeout)
        serial = await self._query(
            Command.OPTIONS_RRQ,
            build_option_request(OPTION_SERIAL_NUMBER),
            lambda p: parse_option(p, OPTION_SERIAL_NUMBER),
            query_timeout,
        )
        return DeviceIdentity(
            device_name=name,
            firmware_version=firmware,
            serial_number=serial,
        )

    async def _stream(self, command: Command, on_data: Callable[[bytes], None]) -> None:
        async with self._session.lock:
            await self._session.send(command)
            while True:
                code, payload = await self._session.receive()
                reply = Command.from_code(code)

                if reply == Command.DATA:
                    on_data(payload)
                elif reply == Command.ACK_OK:
                    return
                elif reply == Command.ACK_ERROR:
                    raise DeviceError(
                        f"{self.ip} rejected {command.name}", command=int(command)
                    )
                else:
                    logger.warning(
                        "Ignoring %s (%d) while reading %s from %s",
                        reply.name, code, command.name, self.ip,
                    )

    async def _query(
        self,
        command: Command,
        payload: bytes,
        parse: Callable[[bytes], T | None],
        timeout: float | None = None,
    ) -> T | None:
        if not self._session.connected:
            return None

        async def exchange() -> tuple[int, bytes]:
            async with self._session.lock:
                await self._session.send(command, payload)
                return await self._session.receive()

        try:
            code, reply = await asyncio.wait_for(exchange(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("%s did not answer %s", self.ip, command.name)
            await self._session.close()
            return None
        except (ProtocolIOError, MalformedFrame) as e:
            logger.debug("%s failed %s: %s", self.ip, command.name, e)
            return None

        if Command.from_code(code) != Command.ACK_OK:
            logger.debug(
                "%s does not support %s (reply %d)", self.ip, command.name, code
            )
            return None
        return parse(reply)


async def quick_identify(
    ip: str,
    port: int = DEFAULT_PORT,
    timeout: float = IDENTIFY_TIMEOUT,
    query_timeout: float = QUERY_TIMEOUT,
) -> DeviceIdentity | None:
    """Handshake with a candidate and read its identification strings.

    The TCP connect and handshake are bounded by ``timeout``; each
    identification query gets its own ``query_timeout``. Unsupported or
    unanswered queries are not failures.

    Returns:
        The identity, or None if the device exposes none of the fields.

    Raises:
        ConnectError: If the connection or handshake does not complete in time.
        HandshakeFailed: If the device rejects the session.
    """
    client = DeviceClient(ip, port, timeout=timeout)
    try:
        try:
            await asyncio.wait_for(client.connect(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ConnectError(f"Handshake with {ip}:{port} timed out") from e
        identity = await client.read_identity(query_timeout)
    finally:
        await client.disconnect()

    return None if identity.empty else identity


async def fetch_attendance(
    ip: str,
    port: int = DEFAULT_PORT,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[AttendanceRecord]:
    """Connect, read users and the attendance log, and disconnect."""
    async with DeviceClient(ip, port, timeout=timeout) as client:
        logger.info("Connected to device %s:%d", ip, port)
        users = await client.list_users()
        return await client.get_attendance(users)
