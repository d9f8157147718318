"""
Tests for the QMP control-channel client
"""
import asyncio
import os
import tempfile

import pytest

from balloon_orch.core.constants import BYTES_PER_MB
from balloon_orch.core.errors import (
    ChannelError,
    ChannelIOError,
    ExchangeTimeout,
    ProtocolError,
)
from balloon_orch.lib.qmp.qmp_client import QMPChannel, parse_address

from conftest import CLOSE, HANG, FakeQMPServer


def run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize(
    "address,expected",
    [
        ("/run/vm.qmp", ("unix", "/run/vm.qmp")),
        ("unix:/run/vm.qmp", ("unix", "/run/vm.qmp")),
        ("tcp:127.0.0.1:4444", ("tcp", ("127.0.0.1", 4444))),
        ("tcp:[::1]:4444", ("tcp", ("::1", 4444))),
    ],
)
def test_parse_address(address, expected):
    assert parse_address(address) == expected


@pytest.mark.parametrize("address", ["tcp:host", "tcp::4444", "tcp:host:port", "unix:"])
def test_parse_address_rejects_garbage(address):
    with pytest.raises(ChannelError):
        parse_address(address)


def test_handshake_and_query_skip_greeting():
    async def scenario():
        async with FakeQMPServer() as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()
                base = await channel.query_base_memory()
            return server.commands, base

    commands, base = run(scenario())
    assert commands == ["qmp_capabilities", "query-memory-size-summary"]
    assert base == 1024 * BYTES_PER_MB


def test_events_before_reply_are_skipped():
    reply = [
        {"event": "BALLOON_CHANGE", "data": {"actual": 1}, "timestamp": {"seconds": 1, "microseconds": 0}},
        {"return": {"base-memory": 2048 * BYTES_PER_MB}},
    ]

    async def scenario():
        async with FakeQMPServer({"query-memory-size-summary": reply}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()
                return await channel.query_base_memory()

    assert run(scenario()) == 2048 * BYTES_PER_MB


@pytest.mark.parametrize(
    "reply",
    [
        {"return": {}},
        {"return": {"base-memory": "lots"}},
        {"return": {"base-memory": -1}},
        {"return": []},
    ],
)
def test_missing_base_memory_is_none(reply):
    async def scenario():
        async with FakeQMPServer({"query-memory-size-summary": reply}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()
                return await channel.query_base_memory()

    assert run(scenario()) is None


def test_balloon_sends_bytes():
    async def scenario():
        async with FakeQMPServer() as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()
                await channel.balloon_mb(334)
            return server.requests

    requests = run(scenario())
    assert requests[-1] == {"execute": "balloon", "arguments": {"value": 334 * 1_048_576}}


def test_error_reply_is_returned_and_logged(log_messages):
    error = {"error": {"class": "DeviceNotActive", "desc": "No balloon device has been activated"}}

    async def scenario():
        async with FakeQMPServer({"balloon": error}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()
                return await channel.balloon(1)

    assert run(scenario()) == error
    assert any("balloon returned DeviceNotActive" in m for m in log_messages)


def test_error_reply_to_handshake_keeps_channel_usable():
    refused = {"error": {"class": "CommandNotFound", "desc": "capabilities already negotiated"}}

    async def scenario():
        async with FakeQMPServer({"qmp_capabilities": refused}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                reply = await channel.handshake()
                base = await channel.query_base_memory()
            return reply, base

    reply, base = run(scenario())
    assert reply == refused
    assert base == 1024 * BYTES_PER_MB


def test_error_reply_to_query_is_none():
    async def scenario():
        async with FakeQMPServer({"query-memory-size-summary": {"error": {"class": "GenericError"}}}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()
                return await channel.query_base_memory()

    assert run(scenario()) is None


def test_reply_without_return_or_error_raises_protocol_error():
    async def scenario():
        async with FakeQMPServer({"balloon": {"id": 7}}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.balloon(1)

    with pytest.raises(ProtocolError):
        run(scenario())


def test_malformed_reply_raises_protocol_error():
    async def scenario():
        async with FakeQMPServer({"query-memory-size-summary": b"not json\n"}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.query_base_memory()

    with pytest.raises(ProtocolError):
        run(scenario())


def test_non_object_reply_raises_protocol_error():
    async def scenario():
        async with FakeQMPServer({"qmp_capabilities": b"[1, 2, 3]\n"}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()

    with pytest.raises(ProtocolError):
        run(scenario())


def test_peer_close_raises_io_error():
    async def scenario():
        async with FakeQMPServer({"qmp_capabilities": CLOSE}) as server:
            async with QMPChannel(server.path, timeout=2) as channel:
                await channel.handshake()

    with pytest.raises(ChannelIOError):
        run(scenario())


def test_unresponsive_peer_hits_deadline():
    async def scenario():
        async with FakeQMPServer({"query-memory-size-summary": HANG}) as server:
            async with QMPChannel(server.path, timeout=0.2) as channel:
                await channel.handshake()
                await channel.query_base_memory()

    with pytest.raises(ExchangeTimeout):
        run(scenario())


def test_connect_to_missing_socket_raises_channel_error():
    path = os.path.join(tempfile.mkdtemp(prefix="qmp"), "absent.sock")

    async def scenario():
        await QMPChannel(path, timeout=1).connect()

    with pytest.raises(ChannelError):
        run(scenario())


def test_exchange_without_connect_raises_io_error():
    with pytest.raises(ChannelIOError):
        run(QMPChannel("/nowhere").handshake())


def test_close_is_idempotent():
    async def scenario():
        async with FakeQMPServer() as server:
            channel = QMPChannel(server.path, timeout=2)
            await channel.connect()
            await channel.close()
            await channel.close()
            return channel.connected

    assert run(scenario()) is False
