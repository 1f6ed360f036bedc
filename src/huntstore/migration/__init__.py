"""Offline migration: backfill engine, checkpointing and parity checks."""

from huntstore.migration.checkpoint import Checkpoint
from huntstore.migration.engine import MigrationEngine, MigrationReport, OrgOutcome, OrgStatus
from huntstore.migration.parity import OrgParity, ParityChecker, ParityReport, ParityStatus
from huntstore.migration.plan import OrgPlan, PlannedWrite, derive_org_plan, validate_org_payload

__all__ = [
    "Checkpoint",
    "MigrationEngine",
    "MigrationReport",
    "OrgOutcome",
    "OrgParity",
    "OrgPlan",
    "OrgStatus",
    "ParityChecker",
    "ParityReport",
    "ParityStatus",
    "PlannedWrite",
    "derive_org_plan",
    "validate_org_payload",
]
