"""File-backed implementation of the StoreAdapter protocol (legacy store).

Each record is one JSON blob on disk. The registry singleton lives at
``app.json`` and organizations at ``orgs/<slug>.json``, matching the layout
of the legacy blob container; every other key maps to
``<table>/<partition>/<row>.json``.

Blobs written by this adapter are envelopes carrying the etag and write
time next to the payload. Blobs written by the legacy application are bare
documents; they are read with a content-hash etag and the file mtime, so
conditional writes still work against them.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Iterator, Optional, Union
from urllib.parse import quote, unquote

from huntstore.db.memory import new_version_token, next_timestamp
from huntstore.db.retry import call_with_retry
from huntstore.models.config import RetryConfig
from huntstore.models.errors import (
    RecordValidationError,
    TransientStoreError,
    VersionConflictError,
)
from huntstore.models.records import (
    ABSENT_VERSION,
    REGISTRY_KEY,
    RecordKey,
    Table,
    VersionedRecord,
    VersionToken,
    org_key,
)

logger = logging.getLogger(__name__)

ENVELOPE_MARKER = "__blob__"
REGISTRY_BLOB = "app.json"
ORGS_DIR = "orgs"


def _segment(value: str) -> str:
    return quote(value, safe="")


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON to *path* via a temp file in the same directory and a rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileBlobStore:
    """
    JSON-blob store adapter rooted at a directory.

    Compare-and-swap is atomic within one process (a single lock guards the
    read-compare-write sequence). Transient I/O errors are retried with the
    configured backoff.
    """

    def __init__(
        self,
        root: Union[Path, str],
        retry: Optional[RetryConfig] = None,
        name: str = "file-blob",
    ) -> None:
        """Initialize the store (the root directory is created lazily)."""
        self.root = Path(root)
        self.retry = retry or RetryConfig()
        self._name = name
        self._lock = Lock()

    @property
    def backend_name(self) -> str:
        return self._name

    # ------------------------------------------------------------------
    # Key <-> path mapping
    # ------------------------------------------------------------------

    def path_for(self, key: RecordKey) -> Path:
        """Blob path of *key*."""
        if key == REGISTRY_KEY:
            return self.root / REGISTRY_BLOB
        if key.table == Table.ORGANIZATIONS and key.row_key == "org":
            return self.root / ORGS_DIR / f"{_segment(key.partition_key)}.json"
        return (
            self.root
            / key.table.value
            / _segment(key.partition_key)
            / f"{_segment(key.row_key)}.json"
        )

    def _keys_for(self, table: Table) -> list[RecordKey]:
        keys: list[RecordKey] = []
        if table == Table.REGISTRY and (self.root / REGISTRY_BLOB).is_file():
            keys.append(REGISTRY_KEY)
        if table == Table.ORGANIZATIONS:
            orgs_dir = self.root / ORGS_DIR
            if orgs_dir.is_dir():
                keys.extend(
                    org_key(unquote(path.stem))
                    for path in orgs_dir.glob("*.json")
                    if path.stem
                )
        table_dir = self.root / table.value
        if table_dir.is_dir():
            for partition_dir in table_dir.iterdir():
                if not partition_dir.is_dir():
                    continue
                for path in partition_dir.glob("*.json"):
                    keys.append(
                        RecordKey(
                            table=table,
                            partition_key=unquote(partition_dir.name),
                            row_key=unquote(path.stem),
                        )
                    )
        return sorted(set(keys), key=RecordKey.sort_key)

    # ------------------------------------------------------------------
    # Blob decoding
    # ------------------------------------------------------------------

    def _load(self, key: RecordKey) -> Optional[VersionedRecord]:
        path = self.path_for(key)
        try:
            raw = path.read_bytes()
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransientStoreError(f"read {path}: {e}", self._name) from e

        try:
            document = json.loads(raw)
        except ValueError as e:
            raise RecordValidationError(str(key), [f"invalid JSON: {e}"], self._name) from e
        if not isinstance(document, dict):
            raise RecordValidationError(str(key), ["blob is not a JSON object"], self._name)

        if document.get(ENVELOPE_MARKER) == 1:
            try:
                payload = document["payload"]
                version = document["etag"]
                updated_at = datetime.fromisoformat(document["updatedAt"])
            except (KeyError, TypeError, ValueError) as e:
                raise RecordValidationError(str(key), [f"malformed envelope: {e!r}"], self._name) from e
            if not isinstance(payload, dict) or not isinstance(version, str) or not version:
                raise RecordValidationError(str(key), ["malformed envelope: bad payload or etag"], self._name)
            return VersionedRecord(key=key, payload=payload, version=version, updated_at=updated_at)

        # Bare document written by the legacy application
        return VersionedRecord(
            key=key,
            payload=document,
            version=f"sha256:{hashlib.sha256(raw).hexdigest()}",
            updated_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )

    def _retry(self, fn, operation: str, correlation_id: Optional[str]):  # noqa: ANN001, ANN202
        return call_with_retry(
            fn,
            config=self.retry,
            backend=self._name,
            operation=operation,
            correlation_id=correlation_id,
        )

    # ------------------------------------------------------------------
    # StoreAdapter
    # ------------------------------------------------------------------

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

        Raises:
            RecordValidationError: The blob is not a JSON object.
        """
        logger.debug(f"{self._name} get {key}", extra={"correlation_id": correlation_id})
        return self._retry(lambda: self._load(key), "get", correlation_id)

    def put(
        self,
        key: RecordKey,
        payload: dict[str, Any],
        expected_version: Optional[VersionToken],
        *,
        correlation_id: Optional[str] = None,
    ) -> VersionToken:
        """
        Write a record as an envelope blob.

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

        def _put() -> VersionToken:
            with self._lock:
                try:
                    current = self._load(key)
                except RecordValidationError:
                    if expected_version is not None:
                        raise
                    current = None
                current_version = current.version if current else None

                if expected_version == ABSENT_VERSION and current is not None:
                    raise VersionConflictError(str(key), expected_version, current_version, self._name)
                if expected_version and current_version != expected_version:
                    raise VersionConflictError(str(key), expected_version, current_version, self._name)

                version = new_version_token()
                updated_at = next_timestamp(current.updated_at if current else None)
                envelope = {
                    ENVELOPE_MARKER: 1,
                    "payload": payload,
                    "etag": version,
                    "updatedAt": updated_at.isoformat(),
                }
                path = self.path_for(key)
                try:
                    write_json_atomic(path, envelope)
                except OSError as e:
                    raise TransientStoreError(f"write {path}: {e}", self._name) from e
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
        Iterate records of a table by partition prefix.

        Args:
            table: Table to scan
            partition_prefix: Partition key prefix ("" for all)
            correlation_id: Log correlation id

        Yields:
            VersionedRecord in (partition, row) order. Blobs that cannot be
            decoded are logged and left out.
        """
        logger.debug(
            f"{self._name} query {table.value}/{partition_prefix}*",
            extra={"correlation_id": correlation_id},
        )

        def _list() -> list[RecordKey]:
            try:
                return self._keys_for(table)
            except OSError as e:
                raise TransientStoreError(f"list {table.value}: {e}", self._name) from e

        for key in self._retry(_list, "query", correlation_id):
            if not key.partition_key.startswith(partition_prefix):
                continue
            try:
                record = self._retry(lambda k=key: self._load(k), "query", correlation_id)
            except RecordValidationError as e:
                logger.warning(f"Skipping unreadable blob in query: {e}", extra={"correlation_id": correlation_id})
                continue
            if record is not None:
                yield record

    def ping(self) -> None:
        """Check the blob root exists (creating it if needed) and is writable."""

        def _ping() -> None:
            try:
                self.root.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise TransientStoreError(f"blob root {self.root}: {e}", self._name) from e
            if not os.access(self.root, os.R_OK | os.W_OK):
                raise TransientStoreError(f"blob root {self.root} is not accessible", self._name)

        self._retry(_ping, "ping", None)
