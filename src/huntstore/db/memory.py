"""In-memory implementation of the StoreAdapter protocol."""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Iterator, Optional

from huntstore.models.errors import VersionConflictError
from huntstore.models.records import (
    ABSENT_VERSION,
    RecordKey,
    Table,
    VersionedRecord,
    VersionToken,
)

logger = logging.getLogger(__name__)


def new_version_token() -> VersionToken:
    """Mint an opaque version token."""
    return uuid.uuid4().hex


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """Current UTC time, nudged forward so it never goes behind *previous*."""
    now = datetime.now(timezone.utc)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class InMemoryStore:
    """
    Dict-backed store adapter.

    Used as the test double for both backends and for local emulation.
    A single lock makes compare-and-swap atomic across threads. Payloads
    are deep-copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self, name: str = "memory") -> None:
        """Initialize an empty store."""
        self._name = name
        self._records: dict[tuple[str, str, str], VersionedRecord] = {}
        self._lock = Lock()

    @property
    def backend_name(self) -> str:
        return self._name

    def get(
        self, key: RecordKey, *, correlation_id: Optional[str] = None
    ) -> Optional[VersionedRecord]:
        logger.debug(f"{self._name} get {key}", extra={"correlation_id": correlation_id})
        with self._lock:
            record = self._records.get(key.sort_key())
        if record is None:
            return None
        return record.model_copy(update={"payload": copy.deepcopy(record.payload)})

    def put(
        self,
        key: RecordKey,
        payload: dict[str, Any],
        expected_version: Optional[VersionToken],
        *,
        correlation_id: Optional[str] = None,
    ) -> VersionToken:
        logger.debug(
            f"{self._name} put {key} expected={expected_version!r}",
            extra={"correlation_id": correlation_id},
        )
        with self._lock:
            current = self._records.get(key.sort_key())
            current_version = current.version if current else None
            if expected_version is not None:
                if expected_version == ABSENT_VERSION:
                    if current is not None:
                        raise VersionConflictError(str(key), expected_version, current_version, self._name)
                elif current_version != expected_version:
                    raise VersionConflictError(str(key), expected_version, current_version, self._name)

            version = new_version_token()
            self._records[key.sort_key()] = VersionedRecord(
                key=key,
                payload=copy.deepcopy(payload),
                version=version,
                updated_at=next_timestamp(current.updated_at if current else None),
            )
        return version

    def query(
        self,
        table: Table,
        partition_prefix: str = "",
        *,
        correlation_id: Optional[str] = None,
    ) -> Iterator[VersionedRecord]:
        logger.debug(
            f"{self._name} query {table.value}/{partition_prefix}*",
            extra={"correlation_id": correlation_id},
        )
        with self._lock:
            matches = [
                record
                for sort_key, record in sorted(self._records.items())
                if sort_key[0] == table.value and sort_key[1].startswith(partition_prefix)
            ]
        for record in matches:
            yield record.model_copy(update={"payload": copy.deepcopy(record.payload)})

    def ping(self) -> None:
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
