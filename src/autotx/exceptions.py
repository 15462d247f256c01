"""Exception hierarchy shared across autotx modules."""


class AutoTxError(Exception):
    """Base exception for autotx errors."""


class ConfigurationError(AutoTxError):
    """Startup configuration is missing or malformed."""
