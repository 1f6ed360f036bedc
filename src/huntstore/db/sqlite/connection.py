"""SQLite database connection management."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Generator, Optional, Union

from huntstore.db.sqlite.schema import SCHEMA_SQL, SCHEMA_VERSION

if TYPE_CHECKING:
    from sqlite3 import Connection


class Database:
    """
    SQLite database connection manager.

    Handles connection lifecycle, schema initialization, and transactions.

    Attributes:
        db_path: Path to the SQLite database file or ":memory:" for in-memory
        timeout: Seconds a connection waits on a locked database
    """

    def __init__(self, db_path: Union[Path, str], timeout: float = 5.0):
        """
        Initialize the database.

        Args:
            db_path: Path to database file or ":memory:" for in-memory database.
            timeout: Busy timeout applied to every connection.
        """
        # Convert to string for sqlite3
        self.db_path = str(db_path) if isinstance(db_path, Path) else db_path
        self.timeout = timeout
        self._is_memory = self.db_path == ":memory:"

        # For in-memory databases, keep a persistent connection shared by all
        # threads and serialize access to it
        self._memory_conn: Optional[Connection] = None
        self._memory_lock = RLock()

        if not self._is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)
            row = conn.execute("SELECT version FROM schema_info").fetchone()
            if row is None:
                conn.execute("INSERT INTO schema_info (version) VALUES (?)", (SCHEMA_VERSION,))

    @contextmanager
    def connect(self) -> Generator[Connection, None, None]:
        """
        Get a database connection as a context manager.

        Handles transaction commit/rollback automatically.
        Returns dict-like Row objects for query results.

        For in-memory databases, reuses the same connection.
        For file databases, creates a new connection each time.

        Example:
            with db.connect() as conn:
                cursor = conn.execute("SELECT * FROM entities")
                rows = cursor.fetchall()
        """
        if self._is_memory:
            with self._memory_lock:
                if self._memory_conn is None:
                    self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
                    self._memory_conn.row_factory = sqlite3.Row
                try:
                    yield self._memory_conn
                    self._memory_conn.commit()
                except Exception:
                    self._memory_conn.rollback()
                    raise
        else:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the database."""
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (table_name,)
            )
            return cursor.fetchone() is not None

    def close(self) -> None:
        """Close the database connection (for in-memory databases)."""
        with self._memory_lock:
            if self._memory_conn is not None:
                self._memory_conn.close()
                self._memory_conn = None
