"""Unit tests for the migration engine and plan derivation."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest
from conftest import RecordingStore, make_hunt, make_org, make_registry, seed_legacy

from huntstore.db.blob import FileBlobStore
from huntstore.migration.checkpoint import Checkpoint
from huntstore.migration.engine import MigrationEngine, OrgStatus
from huntstore.migration.plan import derive_org_plan, registry_projection, validate_org_payload
from huntstore.models.config import RetryConfig
from huntstore.models.errors import RecordValidationError, StoreUnavailableError
from huntstore.models.org import OrgData
from huntstore.models.records import REGISTRY_KEY, Table, date_index_key, org_key, registry_entry_key


@pytest.fixture
def checkpoint_path(tmp_path: Path) -> Path:
    return tmp_path / "migration-checkpoint.json"


@pytest.fixture
def engine(seeded_legacy: RecordingStore, primary: RecordingStore, checkpoint_path: Path) -> MigrationEngine:
    return MigrationEngine(seeded_legacy, primary, checkpoint_path=checkpoint_path, concurrency=2)


def _snapshot(store: RecordingStore) -> dict[str, dict]:
    return {
        str(record.key): record.payload
        for table in Table
        for record in store.inner.query(table)
    }


class TestPlan:
    """derive_org_plan and friends."""

    def test_writes_in_order(self, acme: dict) -> None:
        acme["hunts"].append(make_hunt("autumn", "Autumn", "2025-10-01"))
        plan = derive_org_plan("acme", acme)
        assert [str(w.key) for w in plan.writes] == [
            "AppRegistry/org/acme",
            "Organizations/acme/org",
            "HuntIndex/2025-04-12/acme:spring-hunt",
            "HuntIndex/2025-10-01/acme:autumn",
        ]
        assert [w.entity for w in plan.writes] == [
            "Registry entry",
            "Organization",
            "DateIndex entry",
            "DateIndex entry",
        ]
        assert plan.count(Table.HUNT_INDEX) == 2

    def test_org_payload_copied_as_stored(self, acme: dict) -> None:
        plan = derive_org_plan("acme", acme)
        assert plan.writes[1].payload == acme

    def test_index_entry_projection(self, globex: dict) -> None:
        plan = derive_org_plan("globex", globex)
        assert plan.writes[2].payload == {
            "date": "2025-04-12",
            "orgSlug": "globex",
            "huntId": "city-quest",
            "huntName": "City Quest",
            "status": "active",
        }

    def test_registry_projection_built_from_org(self, acme: dict) -> None:
        entry = registry_projection(OrgData.model_validate(acme))
        assert entry["orgSlug"] == "acme"
        assert entry["primaryContactEmail"] == "ops@acme.test"
        assert entry["orgBlobKey"] == "orgs/acme.json"
        assert entry["summary"] == {"huntsTotal": 1}

    def test_slug_mismatch_invalid(self, acme: dict) -> None:
        with pytest.raises(RecordValidationError, match="does not match key"):
            validate_org_payload("acme-old", acme)

    def test_schema_violation_invalid(self) -> None:
        with pytest.raises(RecordValidationError) as exc_info:
            validate_org_payload("acme", {"org": {"orgSlug": "acme"}, "hunts": []})
        assert exc_info.value.backend == "legacy"


class TestDryRun:
    """Dry runs report the plan and write nothing."""

    def test_two_orgs_planned_zero_writes(
        self, engine: MigrationEngine, primary: RecordingStore, checkpoint_path: Path
    ) -> None:
        report = engine.run(dry_run=True)

        assert report.dry_run
        assert [p.slug for p in report.plans] == ["acme", "globex"]
        assert sum(p.count(Table.ORGANIZATIONS) for p in report.plans) == 2
        assert report.writes == 0
        assert primary.calls["put"] == 0
        assert not checkpoint_path.exists()
        assert report.success

    def test_dry_run_after_partial_run_leaves_checkpoint(
        self, engine: MigrationEngine, checkpoint_path: Path
    ) -> None:
        engine.run(only=["acme"])
        before = checkpoint_path.read_text()
        report = engine.run(dry_run=True, resume=True)
        assert [o.slug for o in report.with_status(OrgStatus.SKIPPED)] == ["acme"]
        assert [p.slug for p in report.plans] == ["globex"]
        assert checkpoint_path.read_text() == before


class TestRun:
    """Full runs."""

    def test_migrates_everything(
        self, engine: MigrationEngine, seeded_legacy: RecordingStore, primary: RecordingStore, acme: dict
    ) -> None:
        report = engine.run()

        assert [o.slug for o in report.with_status(OrgStatus.MIGRATED)] == ["acme", "globex"]
        assert report.registry_copied
        # registry + 2 * (entry, org, one index entry)
        assert report.writes == 7
        assert primary.writes == 7
        assert seeded_legacy.calls["put"] == 0
        assert primary.inner.get(org_key("acme")).payload == acme
        assert primary.inner.get(REGISTRY_KEY).payload == seeded_legacy.inner.get(REGISTRY_KEY).payload
        assert primary.inner.get(registry_entry_key("globex")).payload["orgBlobKey"] == "orgs/globex.json"
        assert primary.inner.get(date_index_key("2025-04-12", "globex", "city-quest")) is not None

    def test_checkpoint_lists_every_org(self, engine: MigrationEngine, checkpoint_path: Path) -> None:
        engine.run()
        document = json.loads(checkpoint_path.read_text())
        assert sorted(document["completed"]) == ["acme", "globex"]
        assert document["registryCopied"] is True

    def test_idempotent(self, engine: MigrationEngine, primary: RecordingStore) -> None:
        engine.run()
        first = _snapshot(primary)
        engine.run()
        assert _snapshot(primary) == first

    def test_resume_after_complete_run_writes_nothing(
        self, engine: MigrationEngine, primary: RecordingStore
    ) -> None:
        engine.run()
        primary.reset_counts()

        report = engine.run(resume=True)

        assert primary.calls["put"] == 0
        assert [o.slug for o in report.with_status(OrgStatus.SKIPPED)] == ["acme", "globex"]
        assert report.writes == 0
        assert report.success

    def test_resume_skips_checkpointed_orgs(
        self, engine: MigrationEngine, primary: RecordingStore, checkpoint_path: Path
    ) -> None:
        checkpoint = Checkpoint.fresh(checkpoint_path)
        checkpoint.mark_registry_copied()
        checkpoint.mark_done("acme")

        report = engine.run(resume=True)

        assert [o.slug for o in report.with_status(OrgStatus.MIGRATED)] == ["globex"]
        assert primary.get(org_key("acme")) is None
        # globex written exactly once: entry, org, index entry
        assert primary.put_keys.count(org_key("globex")) == 1
        assert primary.writes == 3
        assert not report.registry_copied

    def test_resume_without_checkpoint_runs_everything(
        self, engine: MigrationEngine, checkpoint_path: Path
    ) -> None:
        report = engine.run(resume=True)
        assert len(report.with_status(OrgStatus.MIGRATED)) == 2
        assert report.registry_copied

    def test_only_filter(self, engine: MigrationEngine, primary: RecordingStore) -> None:
        report = engine.run(only=["globex", "initech"])
        assert [o.slug for o in report.with_status(OrgStatus.MIGRATED)] == ["globex"]
        failed = report.with_status(OrgStatus.FAILED)
        assert [(o.slug, o.error) for o in failed] == [("initech", "not listed in legacy registry")]
        assert primary.get(org_key("acme")) is None
        assert not report.success

    def test_missing_registry_is_empty_report(self, primary: RecordingStore, checkpoint_path: Path) -> None:
        engine = MigrationEngine(RecordingStore(name="empty"), primary, checkpoint_path=checkpoint_path)
        report = engine.run()
        assert report.outcomes == []
        assert primary.calls["put"] == 0
        assert report.success

    def test_malformed_registry_raises(self, legacy: RecordingStore, primary: RecordingStore, checkpoint_path: Path) -> None:
        legacy.inner.put(REGISTRY_KEY, {"organizations": "everyone"}, None)
        engine = MigrationEngine(legacy, primary, checkpoint_path=checkpoint_path)
        with pytest.raises(RecordValidationError):
            engine.run()

    def test_concurrency_must_be_positive(self, legacy: RecordingStore, primary: RecordingStore, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            MigrationEngine(legacy, primary, checkpoint_path=tmp_path / "c.json", concurrency=0)


class TestProblems:
    """Per-organization failures do not stop the run."""

    def test_invalid_org_skipped(
        self, legacy: RecordingStore, primary: RecordingStore, checkpoint_path: Path, acme: dict
    ) -> None:
        broken = make_org("broken", "Broken")
        broken["hunts"] = [make_hunt("h1", "One", "not-a-date")]
        seed_legacy(legacy, [acme, broken])

        report = MigrationEngine(legacy, primary, checkpoint_path=checkpoint_path).run()

        assert [o.slug for o in report.with_status(OrgStatus.MIGRATED)] == ["acme"]
        invalid = report.with_status(OrgStatus.INVALID)
        assert [o.slug for o in invalid] == ["broken"]
        assert "YYYY-MM-DD" in invalid[0].error
        assert primary.get(org_key("broken")) is None
        assert "broken" not in Checkpoint.load(checkpoint_path)
        assert not report.success

    def test_unreadable_org_blob_is_invalid(
        self, tmp_path: Path, primary: RecordingStore, checkpoint_path: Path, acme: dict, globex: dict
    ) -> None:
        legacy = FileBlobStore(tmp_path / "legacy", RetryConfig(base_delay=0, max_delay=0, max_retries=1))
        seed_legacy(legacy, [acme, globex])
        (tmp_path / "legacy" / "orgs" / "globex.json").write_text("{\"org\": ")

        report = MigrationEngine(legacy, primary, checkpoint_path=checkpoint_path).run()

        assert [o.slug for o in report.with_status(OrgStatus.MIGRATED)] == ["acme"]
        [invalid] = report.with_status(OrgStatus.INVALID)
        assert invalid.slug == "globex"
        assert "invalid JSON" in invalid.error
        assert report.with_status(OrgStatus.FAILED) == []
        assert "globex" not in Checkpoint.load(checkpoint_path)

    def test_listed_but_missing_org_fails(
        self, legacy: RecordingStore, primary: RecordingStore, checkpoint_path: Path, acme: dict, globex: dict
    ) -> None:
        legacy.inner.put(REGISTRY_KEY, make_registry([acme, globex]), None)
        legacy.inner.put(org_key("acme"), acme, None)

        report = MigrationEngine(legacy, primary, checkpoint_path=checkpoint_path).run()

        assert [(o.slug, o.error) for o in report.with_status(OrgStatus.FAILED)] == [
            ("globex", "missing in legacy store")
        ]

    def test_primary_write_failure_not_checkpointed(
        self, engine: MigrationEngine, primary: RecordingStore, checkpoint_path: Path
    ) -> None:
        engine.concurrency = 1
        real_put = primary.put

        def flaky_put(key, payload, expected_version, *, correlation_id=None):  # noqa: ANN001, ANN202
            if key == org_key("acme"):
                raise StoreUnavailableError("throttled", "memory-primary")
            return real_put(key, payload, expected_version, correlation_id=correlation_id)

        primary.put = flaky_put
        report = engine.run()

        failed = report.with_status(OrgStatus.FAILED)
        assert [(o.slug, o.writes) for o in failed] == [("acme", 1)]
        assert [o.slug for o in report.with_status(OrgStatus.MIGRATED)] == ["globex"]
        assert Checkpoint.load(checkpoint_path).completed == ["globex"]

        # A resumed run picks acme up again
        primary.put = real_put
        resumed = engine.run(resume=True)
        assert [o.slug for o in resumed.with_status(OrgStatus.MIGRATED)] == ["acme"]

    def test_registry_copy_failure_raises(self, engine: MigrationEngine, primary: RecordingStore) -> None:
        primary.fail_next("put", StoreUnavailableError("down", "memory-primary"))
        with pytest.raises(StoreUnavailableError):
            engine.run()


class TestCancel:
    """Cooperative cancellation."""

    def test_cancel_before_run_starts_nothing(self, engine: MigrationEngine, primary: RecordingStore) -> None:
        engine.cancel()
        report = engine.run()
        assert report.cancelled
        assert [o.slug for o in report.with_status(OrgStatus.NOT_STARTED)] == ["acme", "globex"]
        # Only the registry copy happened
        assert primary.writes == 1
        assert not report.success

    def test_in_flight_org_finishes_and_checkpoints(
        self, seeded_legacy: RecordingStore, primary: RecordingStore, checkpoint_path: Path
    ) -> None:
        engine = MigrationEngine(seeded_legacy, primary, checkpoint_path=checkpoint_path, concurrency=1)
        real_get = seeded_legacy.get
        cancelled = threading.Event()

        def get_then_cancel(key, *, correlation_id=None):  # noqa: ANN001, ANN202
            record = real_get(key, correlation_id=correlation_id)
            if key == org_key("acme"):
                engine.cancel()
                cancelled.set()
            return record

        seeded_legacy.get = get_then_cancel
        report = engine.run()

        assert cancelled.is_set()
        assert [o.slug for o in report.with_status(OrgStatus.MIGRATED)] == ["acme"]
        assert [o.slug for o in report.with_status(OrgStatus.NOT_STARTED)] == ["globex"]
        assert Checkpoint.load(checkpoint_path).completed == ["acme"]

        # The next resumed run completes the remainder
        seeded_legacy.get = real_get
        resumed = MigrationEngine(seeded_legacy, primary, checkpoint_path=checkpoint_path).run(resume=True)
        assert [o.slug for o in resumed.with_status(OrgStatus.MIGRATED)] == ["globex"]


class TestBackends:
    """check_backends"""

    def test_unreachable_primary(self, engine: MigrationEngine, primary: RecordingStore) -> None:
        primary.fail_next("ping", StoreUnavailableError("down", "memory-primary"))
        with pytest.raises(StoreUnavailableError):
            engine.check_backends()
