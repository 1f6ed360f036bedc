"""Storage-level record shapes shared by every adapter.

A record is addressed by a ``(table, partition_key, row_key)`` triple, the
same shape table storage uses, and carries an opaque version token plus an
``updated_at`` timestamp maintained by the adapter that stored it.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Final, Union

from pydantic import BaseModel, Field

VersionToken = str
"""Opaque concurrency marker. Only ever compared for equality."""

ABSENT_VERSION: Final[VersionToken] = ""
"""Expected-version value meaning the key must not exist yet (create only)."""


class Table(str, Enum):
    """Logical tables, mirroring the table-storage schema."""

    REGISTRY = "AppRegistry"
    ORGANIZATIONS = "Organizations"
    HUNT_INDEX = "HuntIndex"


class RecordKey(BaseModel):
    """Composite key of a stored record.

    Attributes:
        table: Logical table the record lives in.
        partition_key: Partition key (org slug, date, ``app``...).
        row_key: Row key within the partition.
    """

    model_config = {"frozen": True}

    table: Table = Field(description="Logical table")
    partition_key: str = Field(min_length=1, description="Partition key")
    row_key: str = Field(min_length=1, description="Row key")

    def __str__(self) -> str:
        return f"{self.table.value}/{self.partition_key}/{self.row_key}"

    def sort_key(self) -> tuple[str, str, str]:
        return (self.table.value, self.partition_key, self.row_key)


class VersionedRecord(BaseModel):
    """A stored payload together with its concurrency metadata.

    Attributes:
        key: Where the record lives.
        payload: Deserialized document.
        version: Token minted by the adapter on the write that produced it.
        updated_at: Adapter-maintained write time, monotonic per key.
    """

    model_config = {"frozen": True}

    key: RecordKey
    payload: dict[str, Any]
    version: VersionToken
    updated_at: datetime


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

REGISTRY_KEY: Final[RecordKey] = RecordKey(
    table=Table.REGISTRY, partition_key="app", row_key="config"
)
"""The registry singleton (global config, org directory, date index)."""

REGISTRY_ENTRY_PARTITION: Final[str] = "org"


def org_key(slug: str) -> RecordKey:
    """Key of an Organization record."""
    return RecordKey(table=Table.ORGANIZATIONS, partition_key=slug, row_key="org")


def registry_entry_key(slug: str) -> RecordKey:
    """Key of the per-organization registry projection entry."""
    return RecordKey(
        table=Table.REGISTRY, partition_key=REGISTRY_ENTRY_PARTITION, row_key=slug
    )


def date_partition(day: Union[date, str]) -> str:
    """Normalize a date (or ``YYYY-MM-DD`` string) to a partition key."""
    if isinstance(day, date):
        return day.isoformat()
    return date.fromisoformat(day).isoformat()


def date_index_key(day: Union[date, str], slug: str, hunt_id: str) -> RecordKey:
    """Key of a DateIndex entry: ``HuntIndex / <date> / <slug>:<hunt_id>``."""
    return RecordKey(
        table=Table.HUNT_INDEX,
        partition_key=date_partition(day),
        row_key=f"{slug}:{hunt_id}",
    )
