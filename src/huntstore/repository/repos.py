"""Repository port implementations over routed stores.

The repositories never know which backend serves a call. Every operation
asks its ``Routing`` for the reader and writer to use right now, so a flag
flip takes effect on the next call.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Generic, Optional, Protocol, TypeVar, Union

from pydantic import ValidationError

from huntstore.models.errors import RecordValidationError
from huntstore.models.org import (
    DateIndexEntry,
    EventSummary,
    HuntRef,
    OrgData,
    OrgSummary,
    RegistryData,
)
from huntstore.models.records import (
    REGISTRY_KEY,
    Table,
    VersionToken,
    date_index_key,
    date_partition,
    org_key,
)

if TYPE_CHECKING:
    from huntstore.db.protocols import OrgMutator
    from huntstore.repository.coordinator import DualWriteCoordinator, WriteResult
    from huntstore.repository.fallback import ReadResult
    from huntstore.models.records import RecordKey, VersionedRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


def new_correlation_id() -> str:
    """Short random id tying together the log lines of one logical call."""
    return uuid.uuid4().hex[:12]


def validation_messages(error: ValidationError) -> list[str]:
    """Flatten a pydantic error into ``"loc: msg"`` strings."""
    return [
        f"{'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}"
        for item in error.errors()
    ]


@dataclass(frozen=True)
class Versioned(Generic[T]):
    """A value together with the version token needed to update it.

    Attributes:
        value: The decoded entity.
        version: Token of the record it was decoded from.
        served_by: Backend that served (or, for writes, first accepted) it.
    """

    value: T
    version: VersionToken
    served_by: Optional[str] = None


class RecordReader(Protocol):
    """What repositories need from a read path."""

    def get(self, key: RecordKey, *, correlation_id: Optional[str] = None) -> ReadResult: ...

    def query(
        self, table: Table, partition_prefix: str = "", *, correlation_id: Optional[str] = None
    ) -> list[VersionedRecord]: ...


class Routing(Protocol):
    """Resolves the read and write paths for the current flags."""

    def reader(self) -> RecordReader: ...

    def writer(self) -> DualWriteCoordinator: ...


def _parse_org(key: RecordKey, payload: dict[str, Any], backend: Optional[str]) -> OrgData:
    try:
        return OrgData.model_validate(payload)
    except ValidationError as e:
        raise RecordValidationError(str(key), validation_messages(e), backend or "unknown") from e


class OrgRepository:
    """Organization records (``Organizations / <slug> / org``)."""

    def __init__(self, routing: Routing) -> None:
        self.routing = routing

    def get(self, slug: str, *, correlation_id: Optional[str] = None) -> Optional[OrgData]:
        """Return the organization, or None if it does not exist."""
        versioned = self.get_versioned(slug, correlation_id=correlation_id)
        return versioned.value if versioned else None

    def get_versioned(
        self, slug: str, *, correlation_id: Optional[str] = None
    ) -> Optional[Versioned[OrgData]]:
        """Return the organization with its version token.

        Raises:
            RecordValidationError: The stored document is malformed.
            StoreUnavailableError: No backend could serve the read.
        """
        cid = correlation_id or new_correlation_id()
        key = org_key(slug)
        result = self.routing.reader().get(key, correlation_id=cid)
        if result.record is None:
            return None
        org = _parse_org(key, result.record.payload, result.served_by)
        return Versioned(org, result.record.version, result.served_by)

    def upsert(
        self,
        slug: str,
        mutator: OrgMutator,
        *,
        expected_version: Optional[VersionToken] = None,
        correlation_id: Optional[str] = None,
    ) -> Versioned[OrgData]:
        """Read-modify-write an organization through the current write path.

        The mutator may be called twice when a version conflict forces a
        reload, so it must not have side effects.
        """
        cid = correlation_id or new_correlation_id()
        key = org_key(slug)

        def mutate(current: Optional[dict[str, Any]]) -> dict[str, Any]:
            org = _parse_org(key, current, None) if current is not None else None
            updated = mutator(org)
            if updated.slug != slug:
                raise RecordValidationError(
                    str(key), [f"org slug {updated.slug!r} does not match key {slug!r}"]
                )
            # Re-validate: model_copy skips validators (duplicate hunt ids)
            payload = {**updated.to_payload(), "updatedAt": datetime.now(timezone.utc).isoformat()}
            return _parse_org(key, payload, None).to_payload()

        result = self.routing.writer().write(
            key, mutate, expected_version=expected_version, correlation_id=cid
        )
        logger.debug(
            f"Upserted org {slug} to {', '.join(result.written_to)}",
            extra={"correlation_id": cid},
        )
        return Versioned(OrgData.model_validate(result.payload), result.version, result.backend)

    def list_orgs(self, *, correlation_id: Optional[str] = None) -> list[OrgSummary]:
        """Return one summary per readable organization, ordered by slug."""
        cid = correlation_id or new_correlation_id()
        summaries = []
        for record in self.routing.reader().query(Table.ORGANIZATIONS, correlation_id=cid):
            if record.key.row_key != "org":
                continue
            try:
                org = _parse_org(record.key, record.payload, None)
            except RecordValidationError as e:
                logger.warning(f"Skipping malformed organization: {e}", extra={"correlation_id": cid})
                continue
            summaries.append(
                OrgSummary(
                    org_slug=org.slug,
                    org_name=org.org.org_name,
                    hunt_count=len(org.hunts),
                    updated_at=org.updated_at,
                )
            )
        return summaries


class EventRepository:
    """Date-indexed hunt lookups.

    Entries come from the ``HuntIndex`` table and, for records that have
    not been migrated yet, from the registry's ``byDate`` map.
    """

    def __init__(self, routing: Routing) -> None:
        self.routing = routing

    def list_for_date(
        self, day: Union[date, str], *, correlation_id: Optional[str] = None
    ) -> list[EventSummary]:
        cid = correlation_id or new_correlation_id()
        partition = date_partition(day)
        reader = self.routing.reader()

        events: dict[tuple[str, str], EventSummary] = {}
        for record in reader.query(Table.HUNT_INDEX, partition, correlation_id=cid):
            if record.key.partition_key != partition:
                continue
            try:
                entry = DateIndexEntry.model_validate(record.payload)
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed index entry {record.key}: {validation_messages(e)}",
                    extra={"correlation_id": cid},
                )
                continue
            events[(entry.org_slug, entry.hunt_id)] = EventSummary(
                date=partition,
                org_slug=entry.org_slug,
                hunt_id=entry.hunt_id,
                hunt_name=entry.hunt_name,
                status=entry.status,
            )

        for ref in self._registry_refs(reader, partition, cid):
            if (ref.org_slug, ref.hunt_id) in events:
                continue
            summary = self._resolve(reader, partition, ref.org_slug, ref.hunt_id, cid)
            if summary is not None:
                events[(ref.org_slug, ref.hunt_id)] = summary

        return [events[pair] for pair in sorted(events)]

    def _registry_refs(self, reader: RecordReader, partition: str, cid: str) -> list[HuntRef]:
        result = reader.get(REGISTRY_KEY, correlation_id=cid)
        if result.record is None:
            return []
        try:
            registry = RegistryData.model_validate(result.record.payload)
        except ValidationError as e:
            logger.warning(
                f"Ignoring malformed registry date index: {validation_messages(e)}",
                extra={"correlation_id": cid},
            )
            return []
        return list((registry.by_date or {}).get(partition, []))

    def _resolve(
        self, reader: RecordReader, partition: str, slug: str, hunt_id: str, cid: str
    ) -> Optional[EventSummary]:
        result = reader.get(org_key(slug), correlation_id=cid)
        hunt = None
        if result.record is not None:
            try:
                hunt = _parse_org(result.record.key, result.record.payload, result.served_by).find_hunt(hunt_id)
            except RecordValidationError as e:
                logger.warning(f"Cannot resolve {slug}:{hunt_id}: {e}", extra={"correlation_id": cid})
        if hunt is None:
            logger.warning(
                f"Registry date index {partition} points at missing hunt {slug}:{hunt_id}",
                extra={"correlation_id": cid},
            )
            return None
        return EventSummary(
            date=partition,
            org_slug=slug,
            hunt_id=hunt.id,
            hunt_name=hunt.name,
            status=hunt.status,
        )


class IndexRepository:
    """Maintenance of ``HuntIndex / <date> / <slug>:<huntId>`` entries."""

    def __init__(self, routing: Routing) -> None:
        self.routing = routing

    def upsert_date_entry(
        self,
        day: Union[date, str],
        org_slug: str,
        hunt_id: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> WriteResult:
        """Create or refresh the index entry for an existing hunt.

        Raises:
            RecordValidationError: The organization or hunt does not exist.
        """
        cid = correlation_id or new_correlation_id()
        partition = date_partition(day)
        okey = org_key(org_slug)
        result = self.routing.reader().get(okey, correlation_id=cid)
        if result.record is None:
            raise RecordValidationError(str(okey), [f"organization {org_slug!r} does not exist"])
        hunt = _parse_org(okey, result.record.payload, result.served_by).find_hunt(hunt_id)
        if hunt is None:
            raise RecordValidationError(
                str(okey), [f"hunt {hunt_id!r} does not exist in organization {org_slug!r}"]
            )

        entry = DateIndexEntry.for_hunt(partition, org_slug, hunt).to_payload()

        def mutate(current: Optional[dict[str, Any]]) -> dict[str, Any]:
            if current is None:
                return entry
            # Keep fields written by newer schema versions
            return {**current, **entry}

        write = self.routing.writer().write(
            date_index_key(partition, org_slug, hunt_id), mutate, correlation_id=cid
        )
        logger.debug(
            f"Indexed {org_slug}:{hunt_id} under {partition} in {', '.join(write.written_to)}",
            extra={"correlation_id": cid},
        )
        return write
