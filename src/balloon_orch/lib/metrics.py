"""
metrics.py
- Per-cycle METRIC log events and process-wide balancing counters.
- Counters are rendered in Prometheus text format by the HTTP API.
"""

from datetime import datetime, timezone

from loguru import logger

# --- Prometheus Metrics ---
balance_cycles_total = 0
balance_errors_total = 0
balance_soft_failures_total = 0
balloon_adjustments_total = 0
balloon_adjustment_failures_total = 0
balance_last_duration_seconds = 0.0


def record_cycle(duration_seconds):
    global balance_cycles_total, balance_last_duration_seconds
    balance_cycles_total += 1
    balance_last_duration_seconds = duration_seconds


def record_error():
    global balance_errors_total
    balance_errors_total += 1


def record_soft_failure():
    global balance_soft_failures_total
    balance_soft_failures_total += 1


def record_adjustment(success):
    global balloon_adjustments_total, balloon_adjustment_failures_total
    if success:
        balloon_adjustments_total += 1
    else:
        balloon_adjustment_failures_total += 1


def reset():
    global balance_cycles_total, balance_errors_total, balance_soft_failures_total
    global balloon_adjustments_total, balloon_adjustment_failures_total, balance_last_duration_seconds
    balance_cycles_total = 0
    balance_errors_total = 0
    balance_soft_failures_total = 0
    balloon_adjustments_total = 0
    balloon_adjustment_failures_total = 0
    balance_last_duration_seconds = 0.0


def format_metric_line(workload_id, current_memory_mb, target_memory_mb, timestamp=None):
    timestamp = timestamp or datetime.now(timezone.utc)
    return (
        f"METRIC,timestamp={timestamp.isoformat()},vm={workload_id},"
        f"current_memory={current_memory_mb},target_memory={target_memory_mb}"
    )


def emit_metric(workload_id, current_memory_mb, target_memory_mb):
    """Emit the per-cycle METRIC event for one VM."""
    line = format_metric_line(workload_id, current_memory_mb, target_memory_mb)
    logger.bind(
        metric=True,
        vm=workload_id,
        current_memory=current_memory_mb,
        target_memory=target_memory_mb,
    ).info(line)
    return line


def render_prometheus(registry, worker_states=None):
    """
    Render counters plus per-VM gauges as Prometheus exposition text.

    Args:
        registry (AllocationRegistry): Source of per-VM gauges.
        worker_states (dict[str, str] | None): Optional worker state per VM.
    """
    lines = [
        "# HELP balance_cycles_total Completed balancing cycles with a memory reading",
        "# TYPE balance_cycles_total counter",
        f"balance_cycles_total {balance_cycles_total}",
        "# HELP balance_errors_total Cycles aborted by channel, IO or protocol errors",
        "# TYPE balance_errors_total counter",
        f"balance_errors_total {balance_errors_total}",
        "# HELP balance_soft_failures_total Cycles where the VM did not report base-memory",
        "# TYPE balance_soft_failures_total counter",
        f"balance_soft_failures_total {balance_soft_failures_total}",
        "# HELP balloon_adjustments_total Balloon commands completed",
        "# TYPE balloon_adjustments_total counter",
        f"balloon_adjustments_total {balloon_adjustments_total}",
        "# HELP balloon_adjustment_failures_total Balloon commands that failed",
        "# TYPE balloon_adjustment_failures_total counter",
        f"balloon_adjustment_failures_total {balloon_adjustment_failures_total}",
        "# HELP balance_last_duration_seconds Duration of the most recent balancing cycle",
        "# TYPE balance_last_duration_seconds gauge",
        f"balance_last_duration_seconds {balance_last_duration_seconds}",
        "# HELP workload_actual_memory_mb Last observed base memory per VM",
        "# TYPE workload_actual_memory_mb gauge",
    ]
    entries = registry.entries()
    for entry in entries:
        lines.append(f'workload_actual_memory_mb{{vm="{entry.workload_id}"}} {entry.observed_actual_mb}')
    lines += [
        "# HELP workload_target_memory_mb Declared target memory per VM",
        "# TYPE workload_target_memory_mb gauge",
    ]
    for entry in entries:
        lines.append(f'workload_target_memory_mb{{vm="{entry.workload_id}"}} {entry.declared_target_mb}')
    if worker_states:
        lines += [
            "# HELP workload_worker_stopped 1 once the VM's worker has stopped",
            "# TYPE workload_worker_stopped gauge",
        ]
        for workload_id, state in worker_states.items():
            lines.append(f'workload_worker_stopped{{vm="{workload_id}"}} {1 if state == "stopped" else 0}')
    return "\n".join(lines) + "\n"
