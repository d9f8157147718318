"""
qmp_client.py
- Minimal asyncio client for the QEMU Machine Protocol (QMP).
- One connection per balancing cycle: connect, handshake, query, optional balloon, close.
- Every exchange (connect included) is bounded by a deadline.
"""

import asyncio
import json

from loguru import logger

from balloon_orch.core.constants import (
    BYTES_PER_MB,
    DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
    QMP_BALLOON,
    QMP_CAPABILITIES,
    QMP_QUERY_MEMORY,
)
from balloon_orch.core.errors import (
    ChannelError,
    ChannelIOError,
    ExchangeTimeout,
    ProtocolError,
)


def parse_address(address):
    """
    Split a channel address into ("unix", path) or ("tcp", (host, port)).

    Accepts `unix:/path`, `tcp:host:port` and bare paths (Unix socket).
    """
    if address.startswith("tcp:"):
        host, sep, port = address[len("tcp:"):].rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ChannelError(f"Invalid TCP QMP address: {address}")
        return "tcp", (host.strip("[]"), int(port))
    if address.startswith("unix:"):
        address = address[len("unix:"):]
    if not address:
        raise ChannelError("Empty QMP socket path")
    return "unix", address


def decode_message(line):
    try:
        message = json.loads(line)
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolError(f"Malformed QMP message: {line[:200]!r}") from e
    if not isinstance(message, dict):
        raise ProtocolError(f"QMP message is not an object: {line[:200]!r}")
    return message


class QMPChannel:
    def __init__(self, address, timeout=DEFAULT_EXCHANGE_TIMEOUT_SECONDS):
        self.address = address
        self.timeout = timeout
        self._reader = None
        self._writer = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def connected(self):
        return self._writer is not None

    async def connect(self):
        kind, target = parse_address(self.address)
        try:
            if kind == "tcp":
                opener = asyncio.open_connection(*target)
            else:
                opener = asyncio.open_unix_connection(target)
            self._reader, self._writer = await asyncio.wait_for(opener, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ChannelError(f"Timed out connecting to {self.address} after {self.timeout}s") from None
        except OSError as e:
            raise ChannelError(f"Cannot connect to {self.address}: {e}") from e
        logger.debug(f"[qmp] Connected to {self.address}")

    async def close(self):
        writer, self._reader, self._writer = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"[qmp] Ignoring error while closing {self.address}: {e}")

    async def exchange(self, request):
        """
        Send one QMP request and return its response message.

        The greeting banner and asynchronous events are skipped while waiting.
        A QMP `error` reply is a complete exchange: it is logged and returned,
        and interpreting it is left to the caller.

        Raises:
            ChannelIOError: write/read failed, peer closed, or deadline elapsed.
            ProtocolError: response is not a JSON object, or has neither
                `return` nor `error`.
        """
        if not self.connected:
            raise ChannelIOError(f"Not connected to {self.address}")
        try:
            return await asyncio.wait_for(self._exchange(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ExchangeTimeout(
                f"{request.get('execute')} on {self.address} timed out after {self.timeout}s"
            ) from None

    async def _exchange(self, request):
        payload = json.dumps(request) + "\n"
        try:
            self._writer.write(payload.encode("utf-8"))
            await self._writer.drain()
        except OSError as e:
            raise ChannelIOError(f"Write to {self.address} failed: {e}") from e

        while True:
            try:
                line = await self._reader.readline()
            except (OSError, asyncio.LimitOverrunError, ValueError) as e:
                raise ChannelIOError(f"Read from {self.address} failed: {e}") from e
            if not line:
                raise ChannelIOError(f"{self.address} closed the connection before replying")
            if not line.strip():
                continue

            message = decode_message(line)
            if "QMP" in message or "event" in message:
                logger.debug(f"[qmp] Skipping {self.address} banner/event: {message}")
                continue
            if "error" in message:
                error = message["error"] if isinstance(message["error"], dict) else {}
                logger.warning(
                    f"[qmp] {self.address}: {request.get('execute')} returned "
                    f"{error.get('class', 'GenericError')}: {error.get('desc', 'unknown error')}"
                )
                return message
            if "return" not in message:
                raise ProtocolError(f"Unexpected QMP message from {self.address}: {message}")
            return message

    async def handshake(self):
        return await self.exchange({"execute": QMP_CAPABILITIES})

    async def query_base_memory(self):
        """Return the VM's base memory in bytes, or None if the reply lacks it (error replies included)."""
        response = await self.exchange({"execute": QMP_QUERY_MEMORY})
        result = response.get("return")
        if not isinstance(result, dict):
            return None
        value = result.get("base-memory")
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return None
        return value

    async def balloon(self, value_bytes):
        return await self.exchange({"execute": QMP_BALLOON, "arguments": {"value": int(value_bytes)}})

    async def balloon_mb(self, target_mb):
        return await self.balloon(target_mb * BYTES_PER_MB)
