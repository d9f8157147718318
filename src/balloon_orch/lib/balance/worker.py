"""
worker.py
- Per-VM balancing loop.
- Each cycle: connect to QMP, read base memory, consult the shared registry,
  decide, optionally balloon, record, emit a METRIC line.
- Channel/IO/protocol failures end the cycle only; the loop always continues
  until the shutdown flag is seen at a cycle boundary.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from balloon_orch.core.constants import (
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
)
from balloon_orch.core.errors import ChannelError, ChannelIOError, ProtocolError
from balloon_orch.lib import metrics
from balloon_orch.lib.balance.allocation import GROW_BACK, Decision, bytes_to_mb, decide
from balloon_orch.lib.qmp.qmp_client import QMPChannel

CYCLE_ERRORS = (ChannelError, ChannelIOError, ProtocolError)


class WorkerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    QUERYING = "querying"
    DECIDING = "deciding"
    ADJUSTING = "adjusting"
    RECORDING = "recording"
    STOPPED = "stopped"


@dataclass
class CycleResult:
    workload_id: str
    outcome: str  # "balanced", "no-data" or "error"
    actual_mb: Optional[int] = None
    decision: Optional[Decision] = None
    adjusted: bool = False
    error: Optional[str] = None

    @property
    def ok(self):
        return self.outcome == "balanced"


class BalancingWorker:
    def __init__(
        self,
        workload_id,
        registry,
        shutdown,
        interval=DEFAULT_CHECK_INTERVAL_SECONDS,
        cooldown=DEFAULT_COOLDOWN_SECONDS,
        exchange_timeout=DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
        dry_run=False,
        fresh_totals=True,
        clock=time.monotonic,
        channel_factory=QMPChannel,
    ):
        self.workload_id = workload_id
        self.registry = registry
        self.shutdown = shutdown
        self.interval = interval
        self.cooldown = cooldown
        self.exchange_timeout = exchange_timeout
        self.dry_run = dry_run
        self.fresh_totals = fresh_totals
        self.clock = clock
        self.channel_factory = channel_factory
        self.state = WorkerState.IDLE

    async def run(self):
        logger.info(f"[worker] {self.workload_id}: balancing every {self.interval}s")
        while not self.shutdown.is_set():
            try:
                result = await self.run_cycle()
                if result.ok:
                    logger.info(f"[worker] Memory balanced successfully for VM: {self.workload_id}")
            except Exception as e:
                metrics.record_error()
                logger.exception(f"[worker] Unexpected error balancing VM {self.workload_id}: {e}")
                self.state = WorkerState.IDLE
            if await self.shutdown.wait(self.interval):
                break
        self.state = WorkerState.STOPPED
        logger.info(f"[worker] {self.workload_id}: stopped")

    async def run_once(self):
        try:
            return await self.run_cycle()
        finally:
            self.state = WorkerState.STOPPED

    async def run_cycle(self):
        start = time.monotonic()
        entry = self.registry.get_entry(self.workload_id)
        self.state = WorkerState.CONNECTING
        channel = self.channel_factory(entry.channel_address, self.exchange_timeout)
        try:
            await channel.connect()
            self.state = WorkerState.QUERYING
            await channel.handshake()
            base_memory = await channel.query_base_memory()
            if base_memory is None:
                metrics.record_soft_failure()
                logger.warning(f"[worker] VM: {self.workload_id}, Failed to get current memory info")
                return CycleResult(self.workload_id, "no-data")

            actual_mb = bytes_to_mb(base_memory)
            logger.info(f"[worker] VM: {self.workload_id}, Current memory: {actual_mb} MB")

            self.state = WorkerState.DECIDING
            decision = self._decide(actual_mb)

            adjusted = False
            if decision.should_adjust:
                self.state = WorkerState.ADJUSTING
                adjusted = await self._adjust(channel, decision)

            self.state = WorkerState.RECORDING
            recorded = self._record(actual_mb, decision, adjusted)
            metrics.emit_metric(self.workload_id, recorded.observed_actual_mb, recorded.declared_target_mb)
            metrics.record_cycle(time.monotonic() - start)
            return CycleResult(self.workload_id, "balanced", actual_mb, decision, adjusted)
        except CYCLE_ERRORS as e:
            metrics.record_error()
            logger.error(f"[worker] Error balancing memory for VM {self.workload_id}: {e}")
            return CycleResult(self.workload_id, "error", error=str(e))
        finally:
            await channel.close()
            self.state = WorkerState.IDLE

    def _decide(self, actual_mb):
        if self.fresh_totals:
            self.registry.update_entry(self.workload_id, lambda e: setattr(e, "observed_actual_mb", actual_mb))
        total_actual, total_target = self.registry.snapshot_totals()
        own = self.registry.get_entry(self.workload_id)
        decision = decide(
            actual_mb,
            own.declared_target_mb,
            total_actual,
            total_target,
            self.clock() - own.last_adjusted_at,
            self.cooldown,
        )
        logger.debug(
            f"[worker] {self.workload_id}: totals actual={total_actual} target={total_target}, "
            f"decision={decision.reason} -> {decision.new_target_mb} MB"
        )
        return decision

    async def _adjust(self, channel, decision):
        if self.dry_run:
            logger.info(f"[DRY-RUN] VM: {self.workload_id}, Would adjust memory to {decision.new_target_mb} MB")
            return False

        logger.info(f"[worker] VM: {self.workload_id}, Adjusting memory to {decision.new_target_mb} MB")
        try:
            await channel.balloon_mb(decision.new_target_mb)
        except CYCLE_ERRORS as e:
            metrics.record_adjustment(False)
            logger.error(f"[worker] VM: {self.workload_id}, Balloon to {decision.new_target_mb} MB failed: {e}")
            return False
        metrics.record_adjustment(True)
        return True

    def _record(self, actual_mb, decision, adjusted):
        now = self.clock()

        def mutate(entry):
            entry.observed_actual_mb = actual_mb
            if adjusted:
                entry.last_adjusted_at = now
                if decision.reason == GROW_BACK:
                    entry.declared_target_mb = decision.new_target_mb

        return self.registry.update_entry(self.workload_id, mutate)
