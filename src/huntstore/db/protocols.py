"""Storage protocol definitions for huntstore.

Defines structural typing protocols (PEP 544) for the physical store
adapters and for the repository ports application code depends on.
Business logic depends on these Protocols, never on a concrete backend, so
the coordinator and fallback can be exercised against in-memory fakes.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from huntstore.models.org import EventSummary, OrgData, OrgSummary
    from huntstore.models.records import RecordKey, Table, VersionedRecord, VersionToken
    from huntstore.repository.coordinator import WriteResult
    from huntstore.repository.repos import Versioned


# ---------------------------------------------------------------------------
# Store adapters
# ---------------------------------------------------------------------------


@runtime_checkable
class StoreAdapter(Protocol):
    """Uniform CRUD against one physical backend.

    Adapters own version tokens: every successful ``put`` mints a new token
    and returns it. Transient backend errors are retried inside the adapter
    with bounded backoff; exhaustion surfaces as ``StoreUnavailableError``.
    A version conflict is never retried by the adapter.

    Implementations: ``SQLiteTableStore`` (primary), ``FileBlobStore``
    (legacy), ``InMemoryStore`` (fakes and emulation).
    """

    @property
    def backend_name(self) -> str:
        """Human-readable backend identifier (e.g. ``'sqlite-table'``)."""
        ...

    def get(
        self, key: RecordKey, *, correlation_id: Optional[str] = None
    ) -> Optional[VersionedRecord]:
        """Read one record.

        Args:
            key: Record key.
            correlation_id: Opaque id used only for log correlation.

        Returns:
            The record, or ``None`` if the key is absent.

        Raises:
            StoreUnavailableError: Backend unreachable after retries.
        """
        ...

    def put(
        self,
        key: RecordKey,
        payload: dict[str, Any],
        expected_version: Optional[VersionToken],
        *,
        correlation_id: Optional[str] = None,
    ) -> VersionToken:
        """Write one record.

        Args:
            key: Record key.
            payload: Document to store.
            expected_version: Token the caller read. ``ABSENT_VERSION``
                requires the key not to exist. ``None`` is an unconditional
                create-or-replace, reserved for backfill paths.
            correlation_id: Opaque id used only for log correlation.

        Returns:
            The new version token.

        Raises:
            VersionConflictError: Stored version differs from ``expected_version``.
            StoreUnavailableError: Backend unreachable after retries.
        """
        ...

    def query(
        self,
        table: Table,
        partition_prefix: str = "",
        *,
        correlation_id: Optional[str] = None,
    ) -> Iterator[VersionedRecord]:
        """Lazily iterate records of *table* whose partition starts with the prefix.

        Records are yielded in key order.
        """
        ...

    def ping(self) -> None:
        """Raise ``StoreUnavailableError`` if the backend cannot be reached."""
        ...


# ---------------------------------------------------------------------------
# Repository ports
# ---------------------------------------------------------------------------

OrgMutator = Callable[["Optional[OrgData]"], "OrgData"]
"""Receives the current organization (``None`` on first write), returns the new one."""


@runtime_checkable
class OrgRepo(Protocol):
    """Organization records, independent of which backend serves them.

    Implementations: ``OrgRepository``.
    """

    def get(self, slug: str, *, correlation_id: Optional[str] = None) -> Optional[OrgData]:
        """Return the organization, or ``None`` if it does not exist."""
        ...

    def get_versioned(
        self, slug: str, *, correlation_id: Optional[str] = None
    ) -> Optional[Versioned[OrgData]]:
        """Return the organization with the version token needed to update it."""
        ...

    def upsert(
        self,
        slug: str,
        mutator: OrgMutator,
        *,
        expected_version: Optional[VersionToken] = None,
        correlation_id: Optional[str] = None,
    ) -> Versioned[OrgData]:
        """Read-modify-write an organization.

        Args:
            slug: Organization slug (record key).
            mutator: Produces the new organization from the current one.
            expected_version: Pin the write to a token the caller read; a
                mismatch surfaces as a conflict without automatic retry.
            correlation_id: Opaque id used only for log correlation.

        Raises:
            VersionConflictError: Lost the race (after one retry when unpinned).
            StoreUnavailableError: First-written backend unreachable.
            RecordValidationError: Mutator produced an invalid organization.
        """
        ...

    def list_orgs(self, *, correlation_id: Optional[str] = None) -> list[OrgSummary]:
        """Return a summary row per organization."""
        ...


@runtime_checkable
class EventRepo(Protocol):
    """Date-indexed hunt lookups.

    Implementations: ``EventRepository``.
    """

    def list_for_date(
        self, day: Union[date, str], *, correlation_id: Optional[str] = None
    ) -> list[EventSummary]:
        """Return the hunts indexed under *day*, ordered by ``(org, hunt)``."""
        ...


@runtime_checkable
class IndexRepo(Protocol):
    """Maintenance of DateIndex entries.

    Implementations: ``IndexRepository``.
    """

    def upsert_date_entry(
        self,
        day: Union[date, str],
        org_slug: str,
        hunt_id: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> WriteResult:
        """Create or refresh the index entry for a hunt that exists in its org.

        Raises:
            RecordValidationError: The organization or hunt does not exist.
            VersionConflictError: Lost the race after one retry.
            StoreUnavailableError: First-written backend unreachable.
        """
        ...
