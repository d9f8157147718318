"""
config.py
- Defines global configuration values derived from environment variables.
- Configures loguru and (optionally) Sentry once at process startup.
"""

import os
import sys

import sentry_sdk
from loguru import logger

from balloon_orch.core.constants import DEFAULT_API_HOST, DEFAULT_API_PORT


def env_flag(var, default="false"):
    return os.getenv(var, default).lower() == "true"


def env_int(var, default=None):
    """Integer environment variable; unset or unparsable values fall back to default."""
    raw = os.getenv(var)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[config] Ignoring non-integer {var}={raw!r}")
        return default


# --- Runtime Behavior Flags ---
DEBUG = env_flag("DEBUG")
DRY_RUN = env_flag("DRY_RUN")
RUN_ONCE = env_flag("RUN_ONCE")

# --- Balancing Loop (None means "not set", YAML/constants decide) ---
CHECK_INTERVAL_SECONDS = env_int("BALANCE_INTERVAL_SECONDS")
COOLDOWN_SECONDS = env_int("COOLDOWN_SECONDS")
EXCHANGE_TIMEOUT_SECONDS = env_int("EXCHANGE_TIMEOUT_SECONDS")

# --- Logging ---
LOG_TO_FILE = env_flag("LOG_TO_FILE")
LOG_FILE = os.getenv("LOG_FILE", "/var/log/balloon-orch/balloon-orch.log")
LOG_LEVEL = "DEBUG" if DEBUG else "INFO"
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# --- HTTP API ---
API_ENABLED = env_flag("API_ENABLED", "true")
API_HOST = os.getenv("API_HOST", DEFAULT_API_HOST)
API_PORT = env_int("API_PORT", DEFAULT_API_PORT)

# --- Config Paths ---
BALLOON_CONFIG_PATH = os.getenv("BALLOON_CONFIG")

# --- Error Reporting ---
SENTRY_DSN = os.getenv("SENTRY_DSN")


def setup_logging(debug=DEBUG, log_to_file=LOG_TO_FILE, log_file=LOG_FILE):
    level = "DEBUG" if debug else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, colorize=True)
    if log_to_file:
        logger.add(log_file, level=level, format=LOG_FORMAT, rotation="50 MB", retention=5)
    logger.debug(f"[config] Logging initialised at {level}")


def init_sentry(dsn=SENTRY_DSN):
    """Initialise Sentry when a DSN is configured. Returns True if enabled."""
    if not dsn:
        return False
    sentry_sdk.init(dsn=dsn, traces_sample_rate=1.0)
    logger.info("[config] Sentry error reporting enabled")
    return True
