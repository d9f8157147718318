"""
config_loader.py
- Loads the workload list and loop settings from CLI triples and/or a YAML file.
- Any malformed input raises ConfigError before a single worker is spawned.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

import yaml
from loguru import logger

from balloon_orch.core.constants import (
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
)
from balloon_orch.core.errors import ConfigError


@dataclass(frozen=True)
class WorkloadSpec:
    workload_id: str
    channel_address: str
    declared_target_mb: int


@dataclass
class Settings:
    workloads: List[WorkloadSpec] = field(default_factory=list)
    check_interval_seconds: int = DEFAULT_CHECK_INTERVAL_SECONDS
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS
    exchange_timeout_seconds: int = DEFAULT_EXCHANGE_TIMEOUT_SECONDS
    fresh_totals: bool = True
    dry_run: bool = False
    run_once: bool = False


def load_yaml(path):
    """Load a YAML file and return the parsed mapping. Raises ConfigError on failure."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def preview_yaml(path, name=None):
    """
    Log a human-readable preview of the YAML file contents for debugging.
    Typically used during startup to verify config presence and structure.
    """
    if not os.path.exists(path):
        logger.warning(f"[config] File not found: {path}")
        return

    try:
        with open(path, "r") as f:
            contents = f.read()
        logger.debug(
            f"[config] Loaded {name or path}:\n"
            + "\n".join(f"│ {line}" for line in contents.strip().splitlines())
        )
    except OSError as e:
        logger.error(f"[config] Could not preview {path}: {e}")


def parse_target_mb(raw, workload_id):
    if isinstance(raw, bool):
        raise ConfigError(f"{workload_id}: target_memory_mb must be an integer, got {raw!r}")
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"{workload_id}: target_memory_mb must be an integer, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{workload_id}: target_memory_mb must be non-negative, got {value}")
    return value


def _make_spec(workload_id, address, target):
    workload_id = str(workload_id or "").strip()
    if not workload_id:
        raise ConfigError("Workload name must not be empty")
    address = str(address or "").strip()
    if not address:
        raise ConfigError(f"{workload_id}: QMP socket address must not be empty")
    return WorkloadSpec(workload_id, address, parse_target_mb(target, workload_id))


def parse_cli_triples(values):
    """
    Turn a flat list of CLI arguments into workload specs.

    Args:
        values (list[str]): <vm_name> <qmp_socket> <target_memory_mb>, repeated.

    Returns:
        list[WorkloadSpec]: Specs in the order given.
    """
    values = list(values or [])
    if len(values) % 3 != 0:
        raise ConfigError(
            f"VM configuration must be given as <vm_name> <qmp_socket> <target_memory_mb> "
            f"triples; got {len(values)} argument(s)"
        )
    return [_make_spec(*values[i:i + 3]) for i in range(0, len(values), 3)]


def parse_yaml_workloads(doc):
    workloads = doc.get("workloads") or {}
    if not isinstance(workloads, dict):
        raise ConfigError("'workloads' must be a mapping of name -> {socket, target_memory_mb}")

    specs = []
    for name, entry in workloads.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"{name}: workload entry must be a mapping")
        if "socket" not in entry or "target_memory_mb" not in entry:
            raise ConfigError(f"{name}: workload entry needs 'socket' and 'target_memory_mb'")
        specs.append(_make_spec(name, entry["socket"], entry["target_memory_mb"]))
    return specs


def _positive_int(value, name, allow_zero=False):
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{name} must be {'non-negative' if allow_zero else 'positive'}, got {value}")
    return value


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


def load_settings(
    cli_triples=None,
    config_path=None,
    check_interval_seconds=None,
    cooldown_seconds=None,
    exchange_timeout_seconds=None,
    fresh_totals: Optional[bool] = None,
    dry_run=False,
    run_once=False,
):
    """
    Build the runtime Settings from a YAML file and CLI triples.

    Explicit keyword values win over the YAML `default:` section, which wins
    over the built-in constants. YAML workloads come first, CLI triples after.
    """
    doc = load_yaml(config_path) if config_path else {}
    defaults = doc.get("default") or {}
    if not isinstance(defaults, dict):
        raise ConfigError("'default' must be a mapping")

    specs = parse_yaml_workloads(doc) + parse_cli_triples(cli_triples)
    if not specs:
        raise ConfigError("No VMs configured; pass <vm_name> <qmp_socket> <target_memory_mb> or --config")

    seen = set()
    for spec in specs:
        if spec.workload_id in seen:
            raise ConfigError(f"Duplicate VM name: {spec.workload_id}")
        seen.add(spec.workload_id)

    fresh = _first_set(fresh_totals, defaults.get("fresh_totals"), True)
    if not isinstance(fresh, bool):
        raise ConfigError(f"fresh_totals must be true or false, got {fresh!r}")

    return Settings(
        workloads=specs,
        check_interval_seconds=_positive_int(
            _first_set(check_interval_seconds, defaults.get("check_interval_seconds"), DEFAULT_CHECK_INTERVAL_SECONDS),
            "check_interval_seconds",
        ),
        cooldown_seconds=_positive_int(
            _first_set(cooldown_seconds, defaults.get("cooldown_seconds"), DEFAULT_COOLDOWN_SECONDS),
            "cooldown_seconds",
            allow_zero=True,
        ),
        exchange_timeout_seconds=_positive_int(
            _first_set(exchange_timeout_seconds, defaults.get("exchange_timeout_seconds"), DEFAULT_EXCHANGE_TIMEOUT_SECONDS),
            "exchange_timeout_seconds",
        ),
        fresh_totals=fresh,
        dry_run=bool(dry_run),
        run_once=bool(run_once),
    )
