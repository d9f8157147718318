#!/usr/bin/env python3
"""
main.py
- Main asynchronous entrypoint for balloon-orch.
- Launches:
    - One balancing worker per VM (QMP memory query + balloon)
    - HTTP API thread: /healthz, /metrics, /workloads
    - SIGINT/SIGTERM handling for a cooperative shutdown
"""
import argparse
import asyncio
import sys
import time
from threading import Thread

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger

from balloon_orch.core import config
from balloon_orch.core.config_loader import load_settings, preview_yaml
from balloon_orch.core.errors import ConfigError
from balloon_orch.core.registry import AllocationRegistry
from balloon_orch.core.shutdown import ShutdownCoordinator
from balloon_orch.lib import metrics
from balloon_orch.runner import balance

__version__ = "1.0.0"


# --- FastAPI Server ---
def create_api(registry, shutdown, workers=()):
    api = FastAPI(title="balloon-orch", version=__version__)

    def worker_states():
        return {w.workload_id: w.state.value for w in workers}

    @api.get("/healthz")
    async def health():
        if shutdown.is_set():
            return JSONResponse({"status": "stopping"}, status_code=503)
        return {"status": "ok"}

    @api.get("/metrics")
    async def prometheus_metrics():
        return PlainTextResponse(metrics.render_prometheus(registry, worker_states()), media_type="text/plain")

    @api.get("/workloads")
    async def workloads():
        states = worker_states()
        return [
            {**entry.as_dict(), "worker_state": states.get(entry.workload_id)}
            for entry in registry.entries()
        ]

    return api


def start_api(api, host=config.API_HOST, port=config.API_PORT):
    thread = Thread(
        target=uvicorn.run,
        args=(api,),
        kwargs={"host": host, "port": port, "log_level": "warning"},
        name="api",
        daemon=True,
    )
    thread.start()
    logger.info(f"[balloon-orch] HTTP API listening on {host}:{port}")
    return thread


def build_parser():
    parser = argparse.ArgumentParser(prog="balloon-orch", description="Balances memory across VMs")
    parser.add_argument(
        "vm_config",
        nargs="*",
        help="VM configurations in the format: <vm_name> <qmp_socket_path> <target_memory_mb>",
    )
    parser.add_argument("--config", default=config.BALLOON_CONFIG_PATH, help="YAML file with defaults and workloads")
    parser.add_argument("--interval", type=int, default=config.CHECK_INTERVAL_SECONDS, help="Seconds between cycles")
    parser.add_argument("--cooldown", type=int, default=config.COOLDOWN_SECONDS, help="Seconds between grow-backs")
    parser.add_argument(
        "--timeout", type=int, default=config.EXCHANGE_TIMEOUT_SECONDS, help="Deadline per QMP exchange in seconds"
    )
    parser.add_argument(
        "--stale-totals",
        action="store_true",
        help="Snapshot totals before recording this cycle's reading (legacy ordering)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Log intended balloon commands without sending them")
    parser.add_argument("--once", action="store_true", help="Run a single cycle per VM and exit")
    parser.add_argument("--no-api", action="store_true", help="Do not start the HTTP API")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args):
    return load_settings(
        cli_triples=args.vm_config,
        config_path=args.config,
        check_interval_seconds=args.interval,
        cooldown_seconds=args.cooldown,
        exchange_timeout_seconds=args.timeout,
        fresh_totals=False if args.stale_totals else None,
        dry_run=args.dry_run or config.DRY_RUN,
        run_once=args.once or config.RUN_ONCE,
    )


# --- Main Async Orchestration ---
async def main(settings, api_enabled=config.API_ENABLED):
    shutdown = ShutdownCoordinator()
    shutdown.install_signal_handlers()

    registry = AllocationRegistry.from_specs(settings.workloads, now=time.monotonic())
    workers = balance.build_workers(registry, shutdown, settings)

    if api_enabled and not settings.run_once:
        start_api(create_api(registry, shutdown, workers))

    try:
        return await balance.run(registry, shutdown, settings, workers=workers)
    except asyncio.CancelledError:
        logger.info("[balloon-orch] Shutting down workers cleanly...")
        return []


def cli(argv=None):
    args = build_parser().parse_args(argv)
    config.setup_logging(debug=args.debug or config.DEBUG)
    config.init_sentry()

    try:
        settings = settings_from_args(args)
    except ConfigError as e:
        logger.error(f"[balloon-orch] Configuration error: {e}")
        return 2

    if args.config:
        preview_yaml(args.config, name="balloon config")

    try:
        results = asyncio.run(main(settings, api_enabled=config.API_ENABLED and not args.no_api))
    except KeyboardInterrupt:
        logger.info("[balloon-orch] KeyboardInterrupt received. Exiting.")
        return 0

    if settings.run_once and any(not r.ok for r in results):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
