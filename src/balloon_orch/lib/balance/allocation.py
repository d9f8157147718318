"""
allocation.py
- Decision logic for proportional memory balancing across VMs.
- Pure functions: no I/O, no registry access, no clock reads.
"""

from dataclasses import dataclass

from balloon_orch.core.constants import BYTES_PER_MB, DEFAULT_COOLDOWN_SECONDS

SHRINK = "shrink"
SHRINK_SUPPRESSED = "shrink-suppressed"
GROW_BACK = "grow-back"
STEADY = "steady"


@dataclass(frozen=True)
class Decision:
    new_target_mb: int
    should_adjust: bool
    reason: str


def bytes_to_mb(value_bytes):
    return value_bytes // BYTES_PER_MB


def mb_to_bytes(value_mb):
    return value_mb * BYTES_PER_MB


def proportional_share(excess_mb, actual_mb, total_actual_mb):
    """
    This VM's slice of the global excess, weighted by its share of total usage.

    Integer math, truncating. Zero when nothing is in use globally.
    """
    if total_actual_mb <= 0:
        return 0
    return excess_mb * actual_mb // total_actual_mb


def decide(
    actual_mb,
    declared_target_mb,
    total_actual_mb,
    total_declared_target_mb,
    cooldown_elapsed,
    cooldown_threshold=DEFAULT_COOLDOWN_SECONDS,
):
    """
    Decide the new balloon target for one VM.

    Args:
        actual_mb (int): Memory the VM uses right now.
        declared_target_mb (int): Operator goal for the VM.
        total_actual_mb (int): Sum of observed usage across all VMs.
        total_declared_target_mb (int): Sum of declared targets across all VMs.
        cooldown_elapsed (float): Seconds since the VM's last successful balloon.
        cooldown_threshold (float): Seconds that must pass before a grow-back.

    Returns:
        Decision: new target, whether a balloon command is needed, and why.
    """
    # Over budget: every VM gives back its proportional slice of the excess.
    if total_actual_mb > total_declared_target_mb:
        excess = total_actual_mb - total_declared_target_mb
        candidate = max(actual_mb - proportional_share(excess, actual_mb, total_actual_mb), 0)
        if candidate < declared_target_mb:
            return Decision(candidate, True, SHRINK)
        return Decision(candidate, False, SHRINK_SUPPRESSED)

    if actual_mb < declared_target_mb and cooldown_elapsed > cooldown_threshold:
        return Decision(declared_target_mb, True, GROW_BACK)

    return Decision(actual_mb, False, STEADY)
