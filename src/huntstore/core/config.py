"""Configuration loading utilities."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, Optional

from huntstore.models.config import AppConfig, StoreFlags

logger = logging.getLogger(__name__)


def load_app_config(use_dotenv: bool = True) -> AppConfig:
    """Load application configuration from environment variables.

    Args:
        use_dotenv: Load a ``.env`` file from the working directory first.

    Returns:
        AppConfig object with settings from environment
    """
    if use_dotenv:
        from dotenv import load_dotenv

        load_dotenv()
    return AppConfig()


def load_flags() -> StoreFlags:
    """Read the routing flags from the environment."""
    return StoreFlags()


class FlagSource:
    """Holder of the current ``StoreFlags`` snapshot.

    Injected into the repository factory at construction. Callers read
    ``current`` once per operation; ``reload()`` swaps in a fresh snapshot so
    the next call sees the new routing while in-flight calls keep theirs.
    """

    def __init__(
        self,
        initial: Optional[StoreFlags] = None,
        loader: Callable[[], StoreFlags] = load_flags,
    ) -> None:
        self._loader = loader
        self._lock = Lock()
        self._flags = initial if initial is not None else loader()

    @property
    def current(self) -> StoreFlags:
        return self._flags

    def reload(self) -> StoreFlags:
        """Re-read flags from the loader and publish the new snapshot."""
        fresh = self._loader()
        self.set(fresh)
        return fresh

    def set(self, flags: StoreFlags) -> None:
        """Publish an explicit snapshot (operator override, tests)."""
        with self._lock:
            previous = self._flags
            self._flags = flags
        if previous != flags:
            logger.info(f"Store flags changed: {previous.enabled()} -> {flags.enabled()}")
