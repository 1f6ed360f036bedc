"""Sampled comparison of organization records across both stores."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError

from huntstore.models.errors import RecordValidationError
from huntstore.models.org import OrgData, RegistryData
from huntstore.models.records import REGISTRY_KEY, Table, date_index_key, org_key

if TYPE_CHECKING:
    from huntstore.db.protocols import StoreAdapter

logger = logging.getLogger(__name__)

VOLATILE_FIELDS = frozenset({"updatedAt", "etag"})
MAX_DIFFERENCES = 20


def strip_volatile(value: Any) -> Any:
    """Copy of *value* with volatile keys removed at every depth."""
    if isinstance(value, dict):
        return {k: strip_volatile(v) for k, v in value.items() if k not in VOLATILE_FIELDS}
    if isinstance(value, list):
        return [strip_volatile(v) for v in value]
    return value


def structural_diff(legacy: Any, primary: Any, path: str = "$") -> list[str]:
    """Describe where two JSON values differ, one line per difference."""
    if isinstance(legacy, dict) and isinstance(primary, dict):
        differences = []
        for k in sorted(set(legacy) | set(primary)):
            child = f"{path}.{k}"
            if k not in primary:
                differences.append(f"{child}: only in legacy")
            elif k not in legacy:
                differences.append(f"{child}: only in primary")
            else:
                differences.extend(structural_diff(legacy[k], primary[k], child))
        return differences
    if isinstance(legacy, list) and isinstance(primary, list):
        differences = []
        if len(legacy) != len(primary):
            differences.append(f"{path}: length {len(legacy)} != {len(primary)}")
        for i, (a, b) in enumerate(zip(legacy, primary)):
            differences.extend(structural_diff(a, b, f"{path}[{i}]"))
        return differences
    if legacy != primary:
        return [f"{path}: {legacy!r} != {primary!r}"]
    return []


class ParityStatus(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING_PRIMARY = "missing_primary"
    MISSING_LEGACY = "missing_legacy"
    INVALID = "invalid"


@dataclass
class OrgParity:
    slug: str
    status: ParityStatus
    differences: list[str] = field(default_factory=list)


@dataclass
class ParityReport:
    """Result of one parity check."""

    seed: Optional[int]
    population: int
    results: list[OrgParity] = field(default_factory=list)

    @property
    def sampled(self) -> list[str]:
        return [r.slug for r in self.results]

    @property
    def mismatches(self) -> list[OrgParity]:
        return [r for r in self.results if r.status != ParityStatus.MATCH]

    @property
    def in_parity(self) -> bool:
        return not self.mismatches


class ParityChecker:
    """
    Compares a sample of organizations between legacy and primary.

    Payloads are compared after dropping volatile fields. Each sampled
    organization's hunts are also checked for their date-index entries in
    the primary. Differences and unreadable records are reported, never
    raised; only an unreachable backend (``StoreUnavailableError``)
    escapes ``check``.
    """

    def __init__(self, legacy: StoreAdapter, primary: StoreAdapter) -> None:
        self.legacy = legacy
        self.primary = primary

    def population(self) -> list[str]:
        """Organization slugs known to the legacy store, sorted."""
        try:
            record = self.legacy.get(REGISTRY_KEY)
            if record is not None:
                return RegistryData.model_validate(record.payload).org_slugs
        except (RecordValidationError, ValidationError) as e:
            logger.warning(f"Legacy registry is malformed, listing organizations instead: {e}")
        return sorted(
            {r.key.partition_key for r in self.legacy.query(Table.ORGANIZATIONS) if r.key.row_key == "org"}
        )

    def check(self, sample: int = 10, seed: Optional[int] = None) -> ParityReport:
        """
        Compare up to *sample* organizations.

        Args:
            sample: How many organizations to compare.
            seed: Random seed; None takes the first *sample* slugs in order.

        Returns:
            ParityReport
        """
        slugs = self.population()
        count = min(max(sample, 0), len(slugs))
        if seed is None:
            chosen = slugs[:count]
        else:
            chosen = sorted(random.Random(seed).sample(slugs, count))
        logger.info(f"Checking parity of {len(chosen)} of {len(slugs)} organization(s)")

        report = ParityReport(seed=seed, population=len(slugs))
        for slug in chosen:
            try:
                result = self._compare(slug)
            except RecordValidationError as e:
                logger.warning(f"Cannot compare {slug}: {e}")
                result = OrgParity(slug, ParityStatus.INVALID, [str(e)])
            report.results.append(result)
        return report

    def _compare(self, slug: str) -> OrgParity:
        key = org_key(slug)
        legacy = self.legacy.get(key)
        primary = self.primary.get(key)
        if legacy is None and primary is None:
            return OrgParity(slug, ParityStatus.MISSING_LEGACY, ["absent from both stores"])
        if primary is None:
            return OrgParity(slug, ParityStatus.MISSING_PRIMARY)
        if legacy is None:
            return OrgParity(slug, ParityStatus.MISSING_LEGACY)

        differences = structural_diff(strip_volatile(legacy.payload), strip_volatile(primary.payload))
        differences.extend(self._missing_index_entries(slug, legacy.payload))
        if differences:
            if len(differences) > MAX_DIFFERENCES:
                extra = len(differences) - MAX_DIFFERENCES
                differences = differences[:MAX_DIFFERENCES] + [f"... {extra} more"]
            return OrgParity(slug, ParityStatus.MISMATCH, differences)
        return OrgParity(slug, ParityStatus.MATCH)

    def _missing_index_entries(self, slug: str, payload: dict[str, Any]) -> list[str]:
        try:
            org = OrgData.model_validate(payload)
        except ValidationError:
            return []
        missing = []
        for hunt in org.hunts:
            key = date_index_key(hunt.start_date, slug, hunt.id)
            if self.primary.get(key) is None:
                missing.append(f"{key}: index entry missing in primary")
        return missing
