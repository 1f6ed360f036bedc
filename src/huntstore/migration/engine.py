"""Offline backfill of legacy records into the primary store."""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Event
from typing import TYPE_CHECKING, Iterable, Optional, Union

from pydantic import ValidationError

from huntstore.migration.checkpoint import Checkpoint
from huntstore.migration.plan import OrgPlan, derive_org_plan
from huntstore.models.errors import RecordValidationError, StoreError
from huntstore.models.org import RegistryData
from huntstore.models.records import REGISTRY_KEY, VersionedRecord, org_key
from huntstore.repository.repos import new_correlation_id, validation_messages

if TYPE_CHECKING:
    from huntstore.db.protocols import StoreAdapter

logger = logging.getLogger(__name__)

DISPATCH_POLL_SECONDS = 0.5


class OrgStatus(str, Enum):
    PLANNED = "planned"
    MIGRATED = "migrated"
    SKIPPED = "skipped"
    INVALID = "invalid"
    FAILED = "failed"
    NOT_STARTED = "not_started"


@dataclass
class OrgOutcome:
    """What happened to one organization during a run."""

    slug: str
    status: OrgStatus
    writes: int = 0
    error: Optional[str] = None
    plan: Optional[OrgPlan] = None


@dataclass
class MigrationReport:
    """Summary of a migration run."""

    dry_run: bool
    outcomes: list[OrgOutcome] = field(default_factory=list)
    registry_copied: bool = False
    cancelled: bool = False
    writes: int = 0

    def with_status(self, status: OrgStatus) -> list[OrgOutcome]:
        return sorted(
            (o for o in self.outcomes if o.status == status), key=lambda o: o.slug
        )

    @property
    def plans(self) -> list[OrgPlan]:
        return [o.plan for o in self.with_status(OrgStatus.PLANNED) if o.plan is not None]

    @property
    def problems(self) -> list[OrgOutcome]:
        """Invalid, failed and never-started organizations."""
        bad = {OrgStatus.INVALID, OrgStatus.FAILED, OrgStatus.NOT_STARTED}
        return sorted((o for o in self.outcomes if o.status in bad), key=lambda o: o.slug)

    @property
    def success(self) -> bool:
        return not self.cancelled and not self.problems


class MigrationEngine:
    """
    Copies every legacy organization into the primary store.

    For each organization listed in the legacy registry (in sorted order)
    the engine validates the legacy document, derives its registry entry,
    organization record and date-index entries, and upserts them into the
    primary unconditionally. A completed organization is appended to the
    checkpoint before the worker picks up the next one.

    Organizations run on a bounded thread pool; one organization is only
    ever handled by one worker. ``cancel()`` stops dispatching new work and
    lets in-flight organizations finish and checkpoint.

    Usage:
        engine = MigrationEngine(stores.legacy, stores.primary,
                                 checkpoint_path=path, concurrency=3)
        report = engine.run(resume=True)
    """

    def __init__(
        self,
        legacy: StoreAdapter,
        primary: StoreAdapter,
        *,
        checkpoint_path: Union[Path, str],
        concurrency: int = 3,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.legacy = legacy
        self.primary = primary
        self.checkpoint_path = Path(checkpoint_path)
        self.concurrency = concurrency
        self._cancel = Event()

    def cancel(self) -> None:
        """Stop dispatching new organizations; in-flight ones still finish."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested, finishing in-flight organizations")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def check_backends(self) -> None:
        """Ping both stores.

        Raises:
            StoreUnavailableError: Either store is unreachable.
        """
        self.legacy.ping()
        self.primary.ping()

    def load_registry(
        self, correlation_id: Optional[str] = None
    ) -> tuple[Optional[VersionedRecord], Optional[RegistryData]]:
        """Read and decode the legacy registry singleton.

        Returns:
            The raw record and its decoded form, both None if absent.

        Raises:
            RecordValidationError: The registry exists but is malformed.
        """
        record = self.legacy.get(REGISTRY_KEY, correlation_id=correlation_id)
        if record is None:
            return None, None
        try:
            return record, RegistryData.model_validate(record.payload)
        except ValidationError as e:
            raise RecordValidationError(str(REGISTRY_KEY), validation_messages(e), "legacy") from e

    def run(
        self,
        *,
        dry_run: bool = False,
        resume: bool = False,
        only: Optional[Iterable[str]] = None,
    ) -> MigrationReport:
        """
        Run the migration.

        Args:
            dry_run: Derive and report the plan without writing anything
                     (neither the primary store nor the checkpoint).
            resume: Skip organizations already in the checkpoint.
            only: Restrict the run to these slugs.

        Returns:
            MigrationReport

        Raises:
            RecordValidationError: Legacy registry or checkpoint is malformed.
            StoreUnavailableError: The registry could not be read or copied.
        """
        cid = new_correlation_id()
        report = MigrationReport(dry_run=dry_run)

        registry_record, registry = self.load_registry(cid)
        if registry_record is None or registry is None:
            logger.warning("Legacy registry not found, nothing to migrate")
            return report

        slugs = registry.org_slugs
        if only is not None:
            wanted = sorted(set(only))
            for slug in wanted:
                if slug not in slugs:
                    report.outcomes.append(
                        OrgOutcome(slug, OrgStatus.FAILED, error="not listed in legacy registry")
                    )
            slugs = [slug for slug in slugs if slug in wanted]
        logger.info(f"Found {len(slugs)} organization(s) in legacy registry")

        if resume:
            checkpoint = Checkpoint.load(self.checkpoint_path)
        else:
            checkpoint = Checkpoint.fresh(self.checkpoint_path)

        if not dry_run and not (resume and checkpoint.registry_copied):
            self.primary.put(REGISTRY_KEY, registry_record.payload, None, correlation_id=cid)
            checkpoint.mark_registry_copied()
            report.writes += 1
            report.registry_copied = True
            logger.info("Copied registry singleton to primary")

        pending: deque[str] = deque()
        for slug in slugs:
            if resume and slug in checkpoint:
                report.outcomes.append(OrgOutcome(slug, OrgStatus.SKIPPED))
            else:
                pending.append(slug)
        if resume:
            logger.info(f"Resuming: {len(slugs) - len(pending)} organization(s) already done")

        in_flight: dict[Future[OrgOutcome], str] = {}
        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="migrate"
        ) as pool:
            while pending or in_flight:
                while pending and len(in_flight) < self.concurrency and not self.cancelled:
                    slug = pending.popleft()
                    future = pool.submit(self._migrate_org, slug, registry, checkpoint, dry_run)
                    in_flight[future] = slug
                if not in_flight:
                    break
                done, _ = wait(in_flight, timeout=DISPATCH_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    in_flight.pop(future)
                    outcome = future.result()
                    report.outcomes.append(outcome)
                    report.writes += outcome.writes

        if self.cancelled:
            report.cancelled = True
            report.outcomes.extend(OrgOutcome(slug, OrgStatus.NOT_STARTED) for slug in pending)
            logger.warning(f"Run cancelled with {len(pending)} organization(s) not started")

        report.outcomes.sort(key=lambda o: o.slug)
        logger.info(
            f"Migration {'plan' if dry_run else 'run'} finished: "
            f"{len(report.with_status(OrgStatus.MIGRATED))} migrated, "
            f"{len(report.with_status(OrgStatus.SKIPPED))} skipped, "
            f"{len(report.problems)} with problems, {report.writes} write(s)"
        )
        return report

    def _migrate_org(
        self,
        slug: str,
        registry: RegistryData,
        checkpoint: Checkpoint,
        dry_run: bool,
    ) -> OrgOutcome:
        cid = new_correlation_id()
        try:
            record = self.legacy.get(org_key(slug), correlation_id=cid)
        except RecordValidationError as e:
            logger.warning(f"Skipping unreadable organization {slug}: {e.message}", extra={"correlation_id": cid})
            return OrgOutcome(slug, OrgStatus.INVALID, error=e.message)
        except StoreError as e:
            logger.error(f"Failed to read {slug} from legacy: {e}", extra={"correlation_id": cid})
            return OrgOutcome(slug, OrgStatus.FAILED, error=str(e))
        if record is None:
            logger.error(f"Organization {slug} is listed but has no legacy record", extra={"correlation_id": cid})
            return OrgOutcome(slug, OrgStatus.FAILED, error="missing in legacy store")

        try:
            plan = derive_org_plan(slug, record.payload, registry.directory_entry(slug))
        except RecordValidationError as e:
            logger.warning(f"Skipping malformed organization {slug}: {e.message}", extra={"correlation_id": cid})
            return OrgOutcome(slug, OrgStatus.INVALID, error=e.message)

        if dry_run:
            return OrgOutcome(slug, OrgStatus.PLANNED, plan=plan)

        writes = 0
        try:
            for write in plan.writes:
                self.primary.put(write.key, write.payload, None, correlation_id=cid)
                writes += 1
        except StoreError as e:
            logger.error(
                f"Failed to migrate {slug} after {writes} write(s): {e}",
                extra={"correlation_id": cid},
            )
            return OrgOutcome(slug, OrgStatus.FAILED, writes=writes, error=str(e))

        try:
            checkpoint.mark_done(slug)
        except OSError as e:
            logger.error(f"Migrated {slug} but could not checkpoint it: {e}", extra={"correlation_id": cid})
            return OrgOutcome(slug, OrgStatus.FAILED, writes=writes, error=f"checkpoint write failed: {e}")
        logger.info(f"Migrated {slug}: {writes} write(s)", extra={"correlation_id": cid})
        return OrgOutcome(slug, OrgStatus.MIGRATED, writes=writes, plan=plan)
