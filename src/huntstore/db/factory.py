"""Factory for creating the primary/legacy adapter pair."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from huntstore.models.errors import StoreUnavailableError

if TYPE_CHECKING:
    from huntstore.db.protocols import StoreAdapter
    from huntstore.models.config import AppConfig, StoreFlags

logger = logging.getLogger(__name__)


@dataclass
class StoreBundle:
    """Both physical stores taking part in the migration.

    Used at composition roots (CLI, tests) to wire up repositories, the
    migration engine and the parity checker against the same backends.
    """

    primary: StoreAdapter
    legacy: StoreAdapter


def create_stores(config: AppConfig, flags: Optional[StoreFlags] = None) -> StoreBundle:
    """Create the SQLite primary store and the file-blob legacy store.

    Args:
        config: Application configuration (paths, retry settings).
        flags: Live flags; ``local_emulator_enabled`` relocates both stores
               under ``data_dir/emulator``.

    Returns:
        StoreBundle with both adapters.

    Raises:
        StoreUnavailableError: The primary database cannot be opened.
    """
    from huntstore.db.blob import FileBlobStore
    from huntstore.db.sqlite.connection import Database
    from huntstore.db.sqlite.table_store import SQLiteTableStore

    db_path = config.primary_database_path(flags)
    legacy_root = config.legacy_root(flags)
    logger.debug(f"Opening primary store at {db_path}, legacy store at {legacy_root}")

    try:
        db = Database(db_path, timeout=config.retry.call_timeout)
    except (sqlite3.Error, OSError) as e:
        raise StoreUnavailableError(f"cannot open {db_path}: {e}", backend="sqlite-table") from e

    return StoreBundle(
        primary=SQLiteTableStore(db, config.retry),
        legacy=FileBlobStore(legacy_root, config.retry),
    )


def create_memory_stores() -> StoreBundle:
    """Create a pair of in-memory stores (tests and dry experiments)."""
    from huntstore.db.memory import InMemoryStore

    return StoreBundle(
        primary=InMemoryStore("memory-primary"),
        legacy=InMemoryStore("memory-legacy"),
    )
