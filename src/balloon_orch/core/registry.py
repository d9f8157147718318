"""
registry.py
- Shared in-memory allocation state for every balanced VM.
- Stores per workload:
    - declared_target_mb: operator goal, only raised back by grow-back
    - observed_actual_mb: last measured base memory
    - last_adjusted_at: monotonic time of the last successful balloon

Used by balancing workers for cross-VM totals and by the HTTP API for inspection.
Callers only ever get copies; the lock is never held across I/O.
"""

import threading
from dataclasses import dataclass, replace

from loguru import logger


@dataclass
class WorkloadAllocation:
    workload_id: str
    channel_address: str
    declared_target_mb: int
    observed_actual_mb: int = 0
    last_adjusted_at: float = 0.0

    def as_dict(self):
        return {
            "workload_id": self.workload_id,
            "channel_address": self.channel_address,
            "declared_target_mb": self.declared_target_mb,
            "observed_actual_mb": self.observed_actual_mb,
            "last_adjusted_at": self.last_adjusted_at,
        }


class AllocationRegistry:
    def __init__(self, allocations=()):
        self._lock = threading.Lock()
        self._entries = {}
        for allocation in allocations:
            if allocation.workload_id in self._entries:
                raise ValueError(f"duplicate workload id: {allocation.workload_id}")
            self._entries[allocation.workload_id] = replace(allocation)

    @classmethod
    def from_specs(cls, specs, now):
        """
        Build a registry from startup workload specs.

        Args:
            specs (list[WorkloadSpec]): Configured workloads, in order.
            now (float): Monotonic start time; seeds last_adjusted_at so the
                first grow-back waits one full cooldown.
        """
        registry = cls(
            WorkloadAllocation(
                workload_id=spec.workload_id,
                channel_address=spec.channel_address,
                declared_target_mb=spec.declared_target_mb,
                last_adjusted_at=now,
            )
            for spec in specs
        )
        logger.info(f"[registry] Tracking {len(registry)} VM(s): {', '.join(registry.ids())}")
        return registry

    def __len__(self):
        return len(self._entries)

    def ids(self):
        return list(self._entries)

    def snapshot_totals(self):
        """Return (total_actual_mb, total_declared_target_mb) across all entries."""
        with self._lock:
            total_actual = sum(e.observed_actual_mb for e in self._entries.values())
            total_target = sum(e.declared_target_mb for e in self._entries.values())
        return total_actual, total_target

    def get_entry(self, workload_id):
        with self._lock:
            return replace(self._entries[workload_id])

    def update_entry(self, workload_id, mutator):
        """
        Apply `mutator` to a single entry under the lock and return a copy of the result.

        The mutator works on a copy; it is stored only if it passes validation,
        so a rejected mutation leaves the entry as it was.
        """
        with self._lock:
            candidate = replace(self._entries[workload_id])
            mutator(candidate)
            if candidate.observed_actual_mb < 0 or candidate.declared_target_mb < 0:
                raise ValueError(f"{workload_id}: memory values must be non-negative")
            self._entries[workload_id] = candidate
            return replace(candidate)

    def entries(self):
        with self._lock:
            return [replace(e) for e in self._entries.values()]
