"""
errors.py
- Exception taxonomy for balloon-orch.
- ConfigError is fatal at startup; every other error is scoped to a single
  worker cycle and only ever logged.
"""


class BalloonOrchError(Exception):
    """Base class for all balloon-orch errors."""


class ConfigError(BalloonOrchError):
    """Startup configuration is missing or malformed."""


class ChannelError(BalloonOrchError):
    """The QMP control connection could not be established."""


class ChannelIOError(BalloonOrchError):
    """A write or read failed on an established QMP connection."""


class ExchangeTimeout(ChannelIOError):
    """A single request/response exchange exceeded its deadline."""


class ProtocolError(BalloonOrchError):
    """The peer sent something that is not a well-formed QMP response."""
