"""Configuration module for autotx."""

from autotx.config.logging import configure_logging, get_logger
from autotx.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "configure_logging", "get_logger"]
