"""Validation and write-plan derivation for one legacy organization."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from huntstore.models.errors import RecordValidationError
from huntstore.models.org import DateIndexEntry, OrganizationSummary, OrgData
from huntstore.models.records import (
    RecordKey,
    Table,
    date_index_key,
    org_key,
    registry_entry_key,
)
from huntstore.repository.repos import validation_messages

ENTITY_NAMES = {
    Table.REGISTRY: "Registry entry",
    Table.ORGANIZATIONS: "Organization",
    Table.HUNT_INDEX: "DateIndex entry",
}


@dataclass(frozen=True)
class PlannedWrite:
    """One unconditional upsert the engine will issue against the primary."""

    key: RecordKey
    payload: dict[str, Any]

    @property
    def entity(self) -> str:
        return ENTITY_NAMES[self.key.table]


@dataclass
class OrgPlan:
    """Everything derived from one legacy organization."""

    slug: str
    org: OrgData
    writes: list[PlannedWrite] = field(default_factory=list)

    def count(self, table: Table) -> int:
        return sum(1 for write in self.writes if write.key.table == table)


def validate_org_payload(slug: str, payload: dict[str, Any]) -> OrgData:
    """Check a legacy organization document against the schema.

    Raises:
        RecordValidationError: Schema violation, or the profile slug differs
            from the key the document is stored under.
    """
    key = str(org_key(slug))
    try:
        org = OrgData.model_validate(payload)
    except ValidationError as e:
        raise RecordValidationError(key, validation_messages(e), "legacy") from e
    if org.slug != slug:
        raise RecordValidationError(
            key, [f"org.orgSlug {org.slug!r} does not match key {slug!r}"], "legacy"
        )
    return org


def registry_projection(org: OrgData, entry: Optional[OrganizationSummary] = None) -> dict[str, Any]:
    """Per-organization registry entry: the legacy directory entry, or one built from the org."""
    if entry is not None:
        return entry.to_payload()
    contacts = org.org.contacts
    email = contacts[0].get("email") if contacts else None
    return OrganizationSummary(
        org_slug=org.slug,
        org_name=org.org.org_name,
        primary_contact_email=email,
        org_blob_key=f"orgs/{org.slug}.json",
        summary={"huntsTotal": len(org.hunts)},
    ).to_payload()


def derive_org_plan(
    slug: str,
    payload: dict[str, Any],
    entry: Optional[OrganizationSummary] = None,
) -> OrgPlan:
    """Validate a legacy organization and derive its primary-store writes.

    The organization document is copied as stored so a second run writes
    identical bytes. Each hunt is indexed under its start date.

    Raises:
        RecordValidationError: The document is malformed.
    """
    org = validate_org_payload(slug, payload)
    plan = OrgPlan(slug=slug, org=org)
    plan.writes.append(PlannedWrite(registry_entry_key(slug), registry_projection(org, entry)))
    plan.writes.append(PlannedWrite(org_key(slug), payload))
    for hunt in sorted(org.hunts, key=lambda h: (h.start_date, h.id)):
        plan.writes.append(
            PlannedWrite(
                date_index_key(hunt.start_date, slug, hunt.id),
                DateIndexEntry.for_hunt(hunt.start_date, slug, hunt).to_payload(),
            )
        )
    return plan
