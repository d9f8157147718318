"""
constants.py
- Project-wide constants shared across logic and runner modules.
- Includes loop timing defaults, unit conversion and QMP command names.
"""

# --- Loop Timing Defaults ---
DEFAULT_CHECK_INTERVAL_SECONDS = 60
DEFAULT_COOLDOWN_SECONDS = 300  # minimum gap between grow-back balloons
DEFAULT_EXCHANGE_TIMEOUT_SECONDS = 10  # per QMP request/response

# --- Units ---
BYTES_PER_MB = 1024 * 1024

# --- QMP Commands ---
QMP_CAPABILITIES = "qmp_capabilities"
QMP_QUERY_MEMORY = "query-memory-size-summary"
QMP_BALLOON = "balloon"

# --- HTTP API ---
DEFAULT_API_HOST = "0.0.0.0"
DEFAULT_API_PORT = 6060
