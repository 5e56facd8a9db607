"""Tests for the device client operations."""

import pytest

from zkteco_attendance_mcp.client import DeviceClient, fetch_attendance, quick_identify
from zkteco_attendance_mcp.errors import ConnectError, DeviceError, HandshakeFailed, ProtocolIOError
from zkteco_attendance_mcp.models.user import User
from zkteco_attendance_mcp.protocol.commands import Command

from helpers import FakeSession, FakeTerminal, attendance_payload, user_payload


def _client(replies):
    session = FakeSession(replies)
    return DeviceClient("192.168.1.201", session=session), session


@pytest.mark.asyncio
async def test_list_users_in_arrival_order():
    """Two user DATA frames followed by ACK_OK yield uids 1 and 2."""
    client, session = _client([
        (Command.DATA, user_payload("Alice")),
        (Command.DATA, user_payload("Bob")),
        (Command.ACK_OK, b""),
    ])
    users = await client.list_users()

    assert len(users) == 2
    assert [(u.uid, u.name) for u in users] == [(1, "Alice"), (2, "Bob")]
    assert session.sent == [(Command.GET_USER, b"")]


@pytest.mark.asyncio
async def test_list_users_ignores_other_frames():
    """Unrecognized and non-terminal ack frames are skipped."""
    client, _ = _client([
        (Command.PREPARE_DATA, b"\x00\x01\x00\x00"),
        (4242, b"chatter"),
        (Command.DATA, user_payload("Alice")),
        (Command.ACK_DATA, b""),
        (Command.DATA, b"\x00" * 10),
        (Command.DATA, user_payload("Bob")),
        (Command.ACK_OK, b""),
    ])
    users = await client.list_users()
    assert [u.uid for u in users] == [1, 2]
    assert users[1].name == "Bob"


@pytest.mark.asyncio
async def test_list_users_device_error():
    """ACK_ERROR fails the call without partial data."""
    client, _ = _client([
        (Command.DATA, user_payload("Alice")),
        (Command.ACK_ERROR, b""),
    ])
    with pytest.raises(DeviceError) as excinfo:
        await client.list_users()
    assert excinfo.value.command == Command.GET_USER


@pytest.mark.asyncio
async def test_get_attendance_resolves_names():
    client, session = _client([
        (Command.DATA, attendance_payload(1, 1_700_000_000, 0)),
        (Command.DATA, attendance_payload(2, 1_700_000_060, 5)),
        (Command.DATA, attendance_payload(9, 1_700_000_120, 7)),
        (Command.ACK_OK, b""),
    ])
    users = [User(uid=1, name="Alice"), User(uid=2, name="Bob")]
    records = await client.get_attendance(users)

    assert session.sent == [(Command.ATTLOG_RRQ, b"")]
    assert [r.user_name for r in records] == ["Alice", "Bob", "Unknown (ID: 9)"]
    assert [r.event for r in records] == ["Check In", "OT Out", "Unknown"]


@pytest.mark.asyncio
async def test_get_attendance_device_error():
    client, _ = _client([(Command.ACK_ERROR, b"")])
    with pytest.raises(DeviceError):
        await client.get_attendance([])


@pytest.mark.asyncio
async def test_read_identity_partial_support():
    """Unsupported queries leave their field empty."""
    client, session = _client([
        (Command.ACK_OK, b"~DeviceName=ZK-100\x00"),
        (Command.ACK_ERROR, b""),
        (Command.ACK_OK, b"~SerialNumber=ABC123\x00"),
    ])
    identity = await client.read_identity()

    assert identity.device_name == "ZK-100"
    assert identity.firmware_version is None
    assert identity.serial_number == "ABC123"
    assert [cmd for cmd, _ in session.sent] == [
        Command.OPTIONS_RRQ, Command.GET_VERSION, Command.OPTIONS_RRQ,
    ]


@pytest.mark.asyncio
async def test_disconnect_closes_session():
    client, session = _client([])
    await client.disconnect()
    assert session.closed


# ─── End-to-end against a loopback terminal ──────────────────────────

@pytest.mark.asyncio
async def test_fetch_attendance_end_to_end():
    replies = {
        Command.GET_USER: [
            (Command.DATA, user_payload("Alice")),
            (Command.DATA, user_payload("Bob")),
            (Command.ACK_OK, b""),
        ],
        Command.ATTLOG_RRQ: [
            (Command.DATA, attendance_payload(2, 1_700_000_000, 1)),
            (Command.ACK_OK, b""),
        ],
    }
    terminal = FakeTerminal(replies)
    async with terminal as (host, port):
        records = await fetch_attendance(host, port, timeout=2.0)

    assert len(records) == 1
    assert records[0].user_name == "Bob"
    assert records[0].event == "Check Out"
    assert [cmd for cmd, _ in terminal.requests] == [
        Command.CONNECT, Command.GET_USER, Command.ATTLOG_RRQ, Command.EXIT,
    ]


@pytest.mark.asyncio
async def test_client_context_manager_tracks_session():
    async with FakeTerminal() as (host, port):
        async with DeviceClient(host, port, timeout=2.0) as client:
            assert client.connected
            assert client.session.session_id == 0x1234
            assert client.session.reply_id == 1
        assert not client.connected


@pytest.mark.asyncio
async def test_quick_identify_end_to_end():
    options = {"~DeviceName": "ZK-100", "~SerialNumber": "OGT1234"}
    replies = {Command.GET_VERSION: [(Command.ACK_OK, b"Ver 6.60 Apr 28 2017\x00")]}
    async with FakeTerminal(replies, options=options) as (host, port):
        identity = await quick_identify(host, port, timeout=2.0)

    assert identity.device_name == "ZK-100"
    assert identity.firmware_version == "Ver 6.60 Apr 28 2017"
    assert identity.serial_number == "OGT1234"


@pytest.mark.asyncio
async def test_quick_identify_nothing_exposed():
    """A device rejecting every query is still reachable, just anonymous."""
    async with FakeTerminal() as (host, port):
        assert await quick_identify(host, port, timeout=2.0) is None


@pytest.mark.asyncio
async def test_quick_identify_refused():
    async with FakeTerminal() as (host, port):
        pass
    with pytest.raises(ConnectError):
        await quick_identify(host, port, timeout=0.5)


@pytest.mark.asyncio
async def test_connect_handshake_rejected_releases_connection():
    class RejectingTerminal(FakeTerminal):
        def _answer(self, command, payload):
            return [(Command.ACK_UNAUTH, b"")]

    async with RejectingTerminal() as (host, port):
        client = DeviceClient(host, port, timeout=2.0)
        with pytest.raises(HandshakeFailed):
            await client.connect()
        assert not client.connected


@pytest.mark.asyncio
async def test_silent_terminal_drops_client():
    async with FakeTerminal({Command.GET_USER: []}) as (host, port):
        client = DeviceClient(host, port, timeout=0.2)
        await client.connect()
        with pytest.raises(ProtocolIOError):
            await client.list_users()
        assert not client.connected

        with pytest.raises(ProtocolIOError):
            await client.get_attendance([])
        await client.disconnect()


@pytest.mark.asyncio
async def test_quick_identify_keeps_name_when_version_unanswered():
    options = {"~DeviceName": "ZK-100", "~SerialNumber": "OGT1234"}
    async with FakeTerminal({Command.GET_VERSION: []}, options=options) as (host, port):
        identity = await quick_identify(host, port, timeout=2.0, query_timeout=0.2)

    assert identity.device_name == "ZK-100"
    assert identity.firmware_version is None
    # The session is dropped after the unanswered query.
    assert identity.serial_number is None
