"""
shutdown.py
- Process-wide, set-once stop flag shared by every balancing worker.
- Wired to SIGINT/SIGTERM on the running event loop.
"""

import asyncio
import signal

from loguru import logger

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    def __init__(self):
        self._event = asyncio.Event()
        self.reason = None

    def is_set(self):
        return self._event.is_set()

    def request_stop(self, reason="requested"):
        if self._event.is_set():
            return
        self.reason = reason
        logger.info(f"[shutdown] Stop requested ({reason}); workers exit at the next cycle boundary")
        self._event.set()

    async def wait(self, timeout=None):
        """Sleep until stop is requested or `timeout` elapses. Returns True if stopping."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return self._event.is_set()

    def install_signal_handlers(self, loop=None):
        loop = loop or asyncio.get_running_loop()
        for sig in STOP_SIGNALS:
            loop.add_signal_handler(sig, self.request_stop, signal.Signals(sig).name)
