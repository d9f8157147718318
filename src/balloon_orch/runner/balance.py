"""
balance.py
- Spawns one balancing worker per configured VM and waits for all of them.
- Workers share only the allocation registry and the shutdown coordinator.
"""

import asyncio

from loguru import logger

from balloon_orch.lib.balance.worker import BalancingWorker


def build_workers(registry, shutdown, settings, **overrides):
    return [
        BalancingWorker(
            workload_id,
            registry,
            shutdown,
            interval=settings.check_interval_seconds,
            cooldown=settings.cooldown_seconds,
            exchange_timeout=settings.exchange_timeout_seconds,
            dry_run=settings.dry_run,
            fresh_totals=settings.fresh_totals,
            **overrides,
        )
        for workload_id in registry.ids()
    ]


async def run(registry, shutdown, settings, workers=None):
    """
    Run every worker until shutdown (or a single cycle each in run-once mode).
    """
    workers = workers if workers is not None else build_workers(registry, shutdown, settings)
    if settings.dry_run:
        logger.info("[balance] Dry-run mode: balloon commands will be logged, not sent.")

    if settings.run_once:
        results = await asyncio.gather(*(w.run_once() for w in workers))
        failed = [r.workload_id for r in results if not r.ok]
        if failed:
            logger.warning(f"[balance] Single pass finished with failures: {', '.join(failed)}")
        else:
            logger.info("[balance] Single pass finished for all VMs")
        return results

    await asyncio.gather(*(w.run() for w in workers))
    logger.info("[balance] Shutting down gracefully")
    return []
