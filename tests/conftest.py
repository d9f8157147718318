"""
Pytest configuration and fixtures
Provides a fake QMP server, scripted fake channels and log capture
"""
import asyncio
import json
import os
import shutil
import tempfile

import pytest
from loguru import logger

from balloon_orch.core.constants import BYTES_PER_MB
from balloon_orch.core.errors import ChannelError, ChannelIOError
from balloon_orch.lib import metrics

CLOSE = object()  # server hangs up instead of replying
HANG = object()  # server never replies

GREETING = {"QMP": {"version": {"qemu": {"major": 8, "minor": 2, "micro": 0}}, "capabilities": []}}


class FakeQMPServer:
    """Unix-socket QMP stand-in. `responses` maps command name -> reply."""

    def __init__(self, responses=None, greeting=True):
        self.responses = {
            "qmp_capabilities": {"return": {}},
            "query-memory-size-summary": {"return": {"base-memory": 1024 * BYTES_PER_MB}},
            "balloon": {"return": {}},
        }
        self.responses.update(responses or {})
        self.greeting = greeting
        self.requests = []
        self.path = None
        self._dir = None
        self._server = None
        self._release = None

    @property
    def commands(self):
        return [r.get("execute") for r in self.requests]

    async def __aenter__(self):
        self._release = asyncio.Event()
        self._dir = tempfile.mkdtemp(prefix="qmp")
        self.path = os.path.join(self._dir, "qmp.sock")
        self._server = await asyncio.start_unix_server(self._handle, path=self.path)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._release.set()
        self._server.close()
        await self._server.wait_closed()
        shutil.rmtree(self._dir, ignore_errors=True)

    def _write(self, writer, message):
        if isinstance(message, bytes):
            writer.write(message)
        else:
            writer.write(json.dumps(message).encode() + b"\n")

    async def _handle(self, reader, writer):
        try:
            if self.greeting:
                self._write(writer, GREETING)
                await writer.drain()
            while True:
                line = await reader.readline()
                if not line:
                    break
                request = json.loads(line)
                self.requests.append(request)
                reply = self.responses.get(
                    request.get("execute"),
                    {"error": {"class": "CommandNotFound", "desc": "unknown command"}},
                )
                if reply is CLOSE:
                    break
                if reply is HANG:
                    await self._release.wait()
                    break
                for message in reply if isinstance(reply, list) else [reply]:
                    self._write(writer, message)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()


class FakeChannel:
    """In-memory stand-in for QMPChannel driven by a FakeChannelFactory."""

    def __init__(self, factory, address, timeout):
        self.factory = factory
        self.address = address
        self.timeout = timeout
        self.closed = False

    async def connect(self):
        error = self.factory.connect_errors.get(self.address)
        if error:
            raise error

    async def handshake(self):
        return {"return": {}}

    async def query_base_memory(self):
        value = self.factory.base_memory.get(self.address)
        if isinstance(value, Exception):
            raise value
        return value

    async def balloon_mb(self, target_mb):
        error = self.factory.balloon_errors.get(self.address)
        if error:
            raise error
        self.factory.balloons.append((self.address, target_mb))
        return {"return": {}}

    async def close(self):
        self.closed = True


class FakeChannelFactory:
    def __init__(self, base_memory_mb=None):
        # address -> bytes, None (field missing) or an exception
        self.base_memory = {
            address: (mb * BYTES_PER_MB if isinstance(mb, int) else mb)
            for address, mb in (base_memory_mb or {}).items()
        }
        self.connect_errors = {}
        self.balloon_errors = {}
        self.balloons = []
        self.channels = []

    def __call__(self, address, timeout):
        channel = FakeChannel(self, address, timeout)
        self.channels.append(channel)
        return channel

    def refuse(self, address):
        self.connect_errors[address] = ChannelError(f"Cannot connect to {address}")

    def fail_balloon(self, address):
        self.balloon_errors[address] = ChannelIOError(f"{address} closed the connection before replying")


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def log_messages():
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG", format="{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def clock():
    return FakeClock()
