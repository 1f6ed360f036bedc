"""Core utilities and configuration."""

from huntstore.core.config import FlagSource, load_app_config, load_flags
from huntstore.core.logging import setup_logging

__all__ = [
    "FlagSource",
    "load_app_config",
    "load_flags",
    "setup_logging",
]
