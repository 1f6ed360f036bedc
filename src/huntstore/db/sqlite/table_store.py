"""SQLite implementation of the StoreAdapter protocol (primary store).

Emulates table storage: one row per ``(table, partition, row)`` key, an
opaque etag column for optimistic concurrency and a server-side
``updated_at`` that never moves backwards for a key.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterator, Optional

from huntstore.db.memory import new_version_token
from huntstore.db.retry import call_with_retry
from huntstore.models.config import RetryConfig
from huntstore.models.errors import TransientStoreError, VersionConflictError
from huntstore.models.records import (
    ABSENT_VERSION,
    RecordKey,
    Table,
    VersionedRecord,
    VersionToken,
)

if TYPE_CHECKING:
    from huntstore.db.sqlite.connection import Database

logger = logging.getLogger(__name__)

QUERY_PAGE_SIZE = 200


def _utc_iso(value: datetime) -> str:
    # Fixed-width ISO string so MAX() in SQL orders chronologically
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteTableStore:
    """
    SQLite implementation of the StoreAdapter protocol.

    Every call runs in its own short transaction and is retried on
    ``sqlite3.OperationalError`` (locked/busy database) with the configured
    backoff. Conditional writes compare the etag inside the UPDATE itself,
    so two writers presenting the same token cannot both succeed.
    """

    def __init__(
        self,
        db: Database,
        retry: Optional[RetryConfig] = None,
        name: str = "sqlite-table",
    ) -> None:
        """Initialize the store."""
        self.db = db
        self.retry = retry or RetryConfig()
        self._name = name

    @property
    def backend_name(self) -> str:
        return self._name

    def _retry(self, fn, operation: str, correlation_id: Optional[str]):  # noqa: ANN001, ANN202
        return call_with_retry(
            fn,
            config=self.retry,
            backend=self._name,
            operation=operation,
            correlation_id=correlation_id,
        )

    def get(
        self, key: RecordKey, *, correlation_id: Optional[str] = None
    ) -> Optional[VersionedRecord]:
        """
        Get a record by key.

        Args:
            key: Record key
            correlation_id: Log correlation id

        Returns:
            VersionedRecord or None
        """
        logger.debug(f"{self._name} get {key}", extra={"correlation_id": correlation_id})

        def _get() -> Optional[sqlite3.Row]:
            try:
                with self.db.connect() as conn:
                    return conn.execute(
                        """
                        SELECT * FROM entities
                        WHERE table_name = ? AND partition_key = ? AND row_key = ?
                        """,
                        (key.table.value, key.partition_key, key.row_key),
                    ).fetchone()
            except sqlite3.OperationalError as e:
                raise TransientStoreError(str(e), self._name) from e

        row = self._retry(_get, "get", correlation_id)
        return None if row is None else self._row_to_record(row)

    def put(
        self,
        key: RecordKey,
        payload: dict[str, Any],
        expected_version: Optional[VersionToken],
        *,
        correlation_id: Optional[str] = None,
    ) -> VersionToken:
        """
        Write a record, optionally conditional on its current etag.

        Args:
            key: Record key
            payload: Document to store
            expected_version: Etag the caller read, ABSENT_VERSION, or None
            correlation_id: Log correlation id

        Returns:
            The new etag
        """
        logger.debug(
            f"{self._name} put {key} expected={expected_version!r}",
            extra={"correlation_id": correlation_id},
        )
        body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        params = (key.table.value, key.partition_key, key.row_key)

        def _put() -> VersionToken:
            version = new_version_token()
            now = _utc_iso(datetime.now(timezone.utc))
            try:
                with self.db.connect() as conn:
                    if expected_version is None:
                        conn.execute(
                            """
                            INSERT INTO entities
                            (table_name, partition_key, row_key, payload, etag, updated_at)
                            VALUES (?, ?, ?, ?, ?, ?)
                            ON CONFLICT(table_name, partition_key, row_key) DO UPDATE SET
                                payload = excluded.payload,
                                etag = excluded.etag,
                                updated_at = MAX(excluded.updated_at, entities.updated_at)
                            """,
                            (*params, body, version, now),
                        )
                        return version

                    if expected_version == ABSENT_VERSION:
                        cursor = conn.execute(
                            """
                            INSERT OR IGNORE INTO entities
                            (table_name, partition_key, row_key, payload, etag, updated_at)
                            VALUES (?, ?, ?, ?, ?, ?)
                            """,
                            (*params, body, version, now),
                        )
                    else:
                        cursor = conn.execute(
                            """
                            UPDATE entities
                            SET payload = ?, etag = ?, updated_at = MAX(?, updated_at)
                            WHERE table_name = ? AND partition_key = ? AND row_key = ?
                                AND etag = ?
                            """,
                            (body, version, now, *params, expected_version),
                        )

                    if cursor.rowcount == 0:
                        current = conn.execute(
                            """
                            SELECT etag FROM entities
                            WHERE table_name = ? AND partition_key = ? AND row_key = ?
                            """,
                            params,
                        ).fetchone()
                        raise VersionConflictError(
                            str(key),
                            expected_version,
                            current["etag"] if current else None,
                            self._name,
                        )
            except sqlite3.OperationalError as e:
                raise TransientStoreError(str(e), self._name) from e
            return version

        return self._retry(_put, "put", correlation_id)

    def query(
        self,
        table: Table,
        partition_prefix: str = "",
        *,
        correlation_id: Optional[str] = None,
    ) -> Iterator[VersionedRecord]:
        """
        Iterate records of a table by partition prefix, one page at a time.

        Args:
            table: Table to scan
            partition_prefix: Partition key prefix ("" for all)
            correlation_id: Log correlation id

        Yields:
            VersionedRecord in (partition, row) order
        """
        logger.debug(
            f"{self._name} query {table.value}/{partition_prefix}*",
            extra={"correlation_id": correlation_id},
        )
        after: tuple[str, str] = ("", "")
        while True:
            cursor_key = after

            def _page() -> list[sqlite3.Row]:
                try:
                    with self.db.connect() as conn:
                        return conn.execute(
                            """
                            SELECT * FROM entities
                            WHERE table_name = ?
                                AND substr(partition_key, 1, ?) = ?
                                AND (partition_key, row_key) > (?, ?)
                            ORDER BY partition_key, row_key
                            LIMIT ?
                            """,
                            (
                                table.value,
                                len(partition_prefix),
                                partition_prefix,
                                cursor_key[0],
                                cursor_key[1],
                                QUERY_PAGE_SIZE,
                            ),
                        ).fetchall()
                except sqlite3.OperationalError as e:
                    raise TransientStoreError(str(e), self._name) from e

            rows = self._retry(_page, "query", correlation_id)
            for row in rows:
                yield self._row_to_record(row)
            if len(rows) < QUERY_PAGE_SIZE:
                return
            after = (rows[-1]["partition_key"], rows[-1]["row_key"])

    def ping(self) -> None:
        """Check the database answers a trivial query."""

        def _ping() -> None:
            try:
                with self.db.connect() as conn:
                    conn.execute("SELECT 1").fetchone()
            except sqlite3.OperationalError as e:
                raise TransientStoreError(str(e), self._name) from e

        self._retry(_ping, "ping", None)

    def _row_to_record(self, row: sqlite3.Row) -> VersionedRecord:
        """Convert a database row to a VersionedRecord."""
        return VersionedRecord(
            key=RecordKey(
                table=Table(row["table_name"]),
                partition_key=row["partition_key"],
                row_key=row["row_key"],
            ),
            payload=json.loads(row["payload"]),
            version=row["etag"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
