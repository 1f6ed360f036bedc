"""Document schemas for registry, organization and date-index records.

Only the fields the storage layer reasons about are typed; everything else
(rules, teams, stops, scoring, moderation, audit...) rides along as extra
fields so documents written by newer schema versions round-trip untouched.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

HuntStatus = Literal["scheduled", "active", "completed", "archived"]

DEFAULT_SCHEMA_VERSION = "1.0.0"


class _Document(BaseModel):
    """Base for stored documents: camelCase on the wire, unknown keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible dict stored by adapters."""
        return self.model_dump(mode="json", by_alias=True)


def _check_iso_date(value: str) -> str:
    try:
        date.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"expected YYYY-MM-DD date, got {value!r}") from e
    return value


class Hunt(_Document):
    """A single hunt (event) owned by an organization."""

    id: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    name: str
    start_date: str
    end_date: str
    status: HuntStatus = "scheduled"

    @field_validator("start_date", "end_date")
    @classmethod
    def _validate_dates(cls, value: str) -> str:
        return _check_iso_date(value)


class OrgProfile(_Document):
    """Organization profile block."""

    org_slug: str = Field(min_length=1)
    org_name: str
    contacts: list[dict[str, Any]] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)


class OrgData(_Document):
    """Organization record: profile plus its hunts.

    Hunts are unique by id; the slug in the profile is the record's key and
    never changes once created.
    """

    schema_version: str = DEFAULT_SCHEMA_VERSION
    updated_at: Optional[str] = None
    org: OrgProfile
    hunts: list[Hunt] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_unique_hunts(self) -> OrgData:
        seen: set[str] = set()
        for hunt in self.hunts:
            if hunt.id in seen:
                raise ValueError(f"duplicate hunt id {hunt.id!r}")
            seen.add(hunt.id)
        return self

    @property
    def slug(self) -> str:
        return self.org.org_slug

    def find_hunt(self, hunt_id: str) -> Optional[Hunt]:
        for hunt in self.hunts:
            if hunt.id == hunt_id:
                return hunt
        return None


class OrganizationSummary(_Document):
    """Directory entry for one organization inside the registry."""

    org_slug: str = Field(min_length=1)
    org_name: str
    primary_contact_email: Optional[str] = None
    created_at: Optional[str] = None
    org_blob_key: Optional[str] = None
    summary: Optional[dict[str, Any]] = None


class HuntRef(_Document):
    """``(orgSlug, huntId)`` pair as stored in the registry date index."""

    org_slug: str
    hunt_id: str


class RegistryData(_Document):
    """The registry singleton: global config, org directory, date index."""

    schema_version: str = DEFAULT_SCHEMA_VERSION
    updated_at: Optional[str] = None
    app: dict[str, Any] = Field(default_factory=dict)
    organizations: list[OrganizationSummary] = Field(default_factory=list)
    by_date: Optional[dict[str, list[HuntRef]]] = None

    @property
    def org_slugs(self) -> list[str]:
        """Organization slugs in deterministic (sorted, de-duplicated) order."""
        return sorted({entry.org_slug for entry in self.organizations})

    def directory_entry(self, slug: str) -> Optional[OrganizationSummary]:
        for entry in self.organizations:
            if entry.org_slug == slug:
                return entry
        return None


class DateIndexEntry(_Document):
    """Minimal projection stored under ``HuntIndex / <date> / <slug>:<huntId>``."""

    date: str
    org_slug: str
    hunt_id: str
    hunt_name: str
    status: HuntStatus = "scheduled"

    @field_validator("date")
    @classmethod
    def _validate_date(cls, value: str) -> str:
        return _check_iso_date(value)

    @classmethod
    def for_hunt(cls, day: str, slug: str, hunt: Hunt) -> DateIndexEntry:
        return cls(
            date=day,
            org_slug=slug,
            hunt_id=hunt.id,
            hunt_name=hunt.name,
            status=hunt.status,
        )


class EventSummary(BaseModel):
    """What the application shows for "what is happening today"."""

    model_config = {"frozen": True}

    date: str
    org_slug: str
    hunt_id: str
    hunt_name: str
    status: HuntStatus = "scheduled"


class OrgSummary(BaseModel):
    """Row returned by ``OrgRepo.list_orgs``."""

    model_config = {"frozen": True}

    org_slug: str
    org_name: str
    hunt_count: int = 0
    updated_at: Optional[str] = None
