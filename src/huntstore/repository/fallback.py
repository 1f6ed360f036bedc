"""Read paths: direct reads and read-through fallback with backfill."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Any, Optional

from huntstore.models.errors import StoreError, StoreUnavailableError, VersionConflictError
from huntstore.models.records import ABSENT_VERSION, RecordKey, Table, VersionedRecord

if TYPE_CHECKING:
    from huntstore.db.protocols import StoreAdapter

logger = logging.getLogger(__name__)

BACKFILL_ATTEMPTS = 2


@dataclass(frozen=True)
class ReadResult:
    """A logical read: the record (or None) and the backend that served it."""

    record: Optional[VersionedRecord]
    served_by: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.record is not None


class DirectReader:
    """Reads from exactly one store."""

    def __init__(self, adapter: StoreAdapter) -> None:
        self.adapter = adapter

    def get(self, key: RecordKey, *, correlation_id: Optional[str] = None) -> ReadResult:
        record = self.adapter.get(key, correlation_id=correlation_id)
        return ReadResult(record, self.adapter.backend_name if record else None)

    def query(
        self,
        table: Table,
        partition_prefix: str = "",
        *,
        correlation_id: Optional[str] = None,
    ) -> list[VersionedRecord]:
        return list(self.adapter.query(table, partition_prefix, correlation_id=correlation_id))


class ReadThroughFallback:
    """
    Primary-first reads that fall back to the legacy store.

    A legacy hit for a key the primary does not have schedules one
    opportunistic backfill of that record into the primary. Backfills run
    on an executor, never block or fail the read, and are attempted at most
    twice. They are create-only (``ABSENT_VERSION``), so a record written to
    the primary in the meantime is never overwritten with older legacy data.
    """

    def __init__(
        self,
        primary: StoreAdapter,
        legacy: StoreAdapter,
        *,
        executor: Optional[Executor] = None,
        max_workers: int = 2,
    ) -> None:
        self.primary = primary
        self.legacy = legacy
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="backfill"
        )
        self._lock = Lock()
        self._pending: dict[tuple[str, str, str], Future[Any]] = {}

    def get(self, key: RecordKey, *, correlation_id: Optional[str] = None) -> ReadResult:
        """
        Read *key* from the primary, falling back to the legacy store.

        Args:
            key: Record key.
            correlation_id: Passed through to adapters for logging.

        Returns:
            ReadResult with ``served_by`` naming the backend used.

        Raises:
            StoreUnavailableError: The legacy store is unreachable after the
                primary missed or failed.
        """
        primary_missed = False
        try:
            record = self.primary.get(key, correlation_id=correlation_id)
            if record is not None:
                return ReadResult(record, self.primary.backend_name)
            primary_missed = True
        except StoreUnavailableError as e:
            logger.warning(
                f"Primary unavailable for {key}, reading legacy: {e}",
                extra={"correlation_id": correlation_id},
            )

        record = self.legacy.get(key, correlation_id=correlation_id)
        if record is None:
            return ReadResult(None, None)

        logger.info(
            f"Served {key} from legacy ({self.legacy.backend_name})",
            extra={"correlation_id": correlation_id},
        )
        if primary_missed:
            self._schedule_backfill(record, correlation_id)
        return ReadResult(record, self.legacy.backend_name)

    def query(
        self,
        table: Table,
        partition_prefix: str = "",
        *,
        correlation_id: Optional[str] = None,
    ) -> list[VersionedRecord]:
        """Primary records plus legacy records for keys the primary lacks, in key order."""
        try:
            primary_records = list(
                self.primary.query(table, partition_prefix, correlation_id=correlation_id)
            )
        except StoreUnavailableError as e:
            logger.warning(
                f"Primary unavailable for query {table.value}/{partition_prefix}*: {e}",
                extra={"correlation_id": correlation_id},
            )
            primary_records = []

        seen = {record.key.sort_key() for record in primary_records}
        merged = primary_records + [
            record
            for record in self.legacy.query(table, partition_prefix, correlation_id=correlation_id)
            if record.key.sort_key() not in seen
        ]
        return sorted(merged, key=lambda record: record.key.sort_key())

    # ------------------------------------------------------------------
    # Opportunistic backfill
    # ------------------------------------------------------------------

    def _schedule_backfill(self, record: VersionedRecord, correlation_id: Optional[str]) -> None:
        sort_key = record.key.sort_key()
        with self._lock:
            if sort_key in self._pending:
                return
            future = self._executor.submit(self._backfill, record, correlation_id)
            self._pending[sort_key] = future
        future.add_done_callback(lambda _f: self._forget(sort_key))

    def _forget(self, sort_key: tuple[str, str, str]) -> None:
        with self._lock:
            self._pending.pop(sort_key, None)

    def _backfill(self, record: VersionedRecord, correlation_id: Optional[str]) -> bool:
        for attempt in range(1, BACKFILL_ATTEMPTS + 1):
            try:
                self.primary.put(
                    record.key, record.payload, ABSENT_VERSION, correlation_id=correlation_id
                )
                logger.info(
                    f"Backfilled {record.key} into primary",
                    extra={"correlation_id": correlation_id},
                )
                return True
            except VersionConflictError:
                logger.debug(
                    f"Backfill of {record.key} skipped, primary already has it",
                    extra={"correlation_id": correlation_id},
                )
                return False
            except StoreError as e:
                logger.warning(
                    f"Backfill of {record.key} failed (attempt {attempt}/{BACKFILL_ATTEMPTS}): {e}",
                    extra={"correlation_id": correlation_id},
                )
        return False

    @property
    def pending_backfills(self) -> int:
        """Backfills scheduled but not yet finished."""
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for scheduled backfills to finish."""
        with self._lock:
            futures = list(self._pending.values())
        wait(futures, timeout=timeout)

    def close(self) -> None:
        """Drain backfills and shut down the executor if this instance created it."""
        self.drain()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
