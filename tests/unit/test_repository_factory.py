"""Unit tests for the repository factory, routing and repository ports."""

from __future__ import annotations

import threading
from typing import Optional

import pytest
from conftest import RecordingStore, flag_source, make_hunt, make_org

from huntstore.db.protocols import EventRepo, IndexRepo, OrgRepo
from huntstore.models.config import StoreFlags
from huntstore.models.errors import RecordValidationError, VersionConflictError
from huntstore.models.org import Hunt, OrgData
from huntstore.models.records import REGISTRY_KEY, date_index_key, org_key
from huntstore.repository.factory import ReadRoute, RepositoryFactory, WriteRoute, resolve_routes
from huntstore.repository.fallback import DirectReader, ReadThroughFallback


def add_hunt(hunt_id: str, start: str = "2025-06-01"):  # noqa: ANN201
    """Mutator appending a hunt to an organization."""

    def mutator(org: Optional[OrgData]) -> OrgData:
        assert org is not None
        hunt = Hunt.model_validate(make_hunt(hunt_id, hunt_id.title(), start))
        return org.model_copy(update={"hunts": [*org.hunts, hunt]})

    return mutator


class TestRoutingTable:
    """resolve_routes covers every flag combination."""

    @pytest.mark.parametrize(
        ("primary", "dual", "first", "expected"),
        [
            (False, False, False, (ReadRoute.LEGACY, WriteRoute.LEGACY)),
            (False, True, True, (ReadRoute.LEGACY, WriteRoute.LEGACY)),
            (True, False, False, (ReadRoute.LEGACY, WriteRoute.LEGACY)),
            (True, False, True, (ReadRoute.PRIMARY, WriteRoute.PRIMARY)),
            (True, True, False, (ReadRoute.LEGACY, WriteRoute.DUAL)),
            (True, True, True, (ReadRoute.FALLBACK, WriteRoute.DUAL)),
        ],
    )
    def test_routes(self, primary: bool, dual: bool, first: bool, expected: tuple) -> None:
        flags = StoreFlags(primary_store_enabled=primary, dual_write_enabled=dual, read_primary_first=first)
        assert resolve_routes(flags) == expected


class TestFactory:
    """Per-call resolution."""

    def test_repos_satisfy_protocols(self, make_factory) -> None:  # noqa: ANN001
        factory = make_factory()
        assert isinstance(factory.org_repo(), OrgRepo)
        assert isinstance(factory.event_repo(), EventRepo)
        assert isinstance(factory.index_repo(), IndexRepo)

    def test_reader_by_route(self, make_factory) -> None:  # noqa: ANN001
        assert isinstance(make_factory().reader(), DirectReader)
        fallback = make_factory(primary_store_enabled=True, dual_write_enabled=True, read_primary_first=True)
        assert isinstance(fallback.reader(), ReadThroughFallback)

    def test_flag_flip_applies_to_next_call(
        self, stores, primary: RecordingStore, legacy: RecordingStore, acme: dict  # noqa: ANN001
    ) -> None:
        legacy.inner.put(org_key("acme"), acme, None)
        flags = flag_source()
        factory = RepositoryFactory(stores, flags)
        repo = factory.org_repo()
        try:
            assert repo.get("acme").slug == "acme"
            assert primary.calls["get"] == 0

            flags.set(StoreFlags(primary_store_enabled=True, dual_write_enabled=True, read_primary_first=True))
            repo.get("acme")
            factory.fallback.drain()
            assert primary.calls["get"] == 1
            backfilled = primary.calls["put"]

            # Rollback: straight back to legacy-only
            flags.set(StoreFlags())
            repo.upsert("acme", add_hunt("summer"))
            assert primary.calls["put"] == backfilled
            hunts = legacy.inner.get(org_key("acme")).payload["hunts"]
            assert [h["id"] for h in hunts] == ["spring-hunt", "summer"]
        finally:
            factory.close()


class TestOrgRepository:
    """OrgRepo operations."""

    def test_get_missing(self, make_factory) -> None:  # noqa: ANN001
        assert make_factory().org_repo().get("nobody") is None

    def test_get_malformed_raises_validation(self, make_factory, legacy: RecordingStore) -> None:  # noqa: ANN001
        legacy.inner.put(org_key("acme"), {"hunts": "nope"}, None)
        with pytest.raises(RecordValidationError):
            make_factory().org_repo().get("acme")

    def test_upsert_dual_write(
        self, make_factory, primary: RecordingStore, legacy: RecordingStore, acme: dict  # noqa: ANN001
    ) -> None:
        legacy.inner.put(org_key("acme"), acme, None)
        repo = make_factory(primary_store_enabled=True, dual_write_enabled=True, read_primary_first=True).org_repo()

        updated = repo.upsert("acme", add_hunt("summer"))

        assert [h.id for h in updated.value.hunts] == ["spring-hunt", "summer"]
        assert updated.served_by == "memory-primary"
        assert updated.value.updated_at != acme["updatedAt"]
        assert primary.get(org_key("acme")).payload == legacy.get(org_key("acme")).payload
        # Untyped fields survive the round trip
        assert primary.get(org_key("acme")).payload["audit"] == {"createdBy": "import"}

    def test_upsert_creates_new_org(self, make_factory, legacy: RecordingStore) -> None:  # noqa: ANN001
        repo = make_factory().org_repo()

        def create(org: Optional[OrgData]) -> OrgData:
            assert org is None
            return OrgData.model_validate(make_org("newco", "NewCo"))

        created = repo.upsert("newco", create)
        assert created.value.slug == "newco"
        assert legacy.get(org_key("newco")) is not None

    def test_upsert_cannot_change_slug(self, make_factory, legacy: RecordingStore, acme: dict) -> None:  # noqa: ANN001
        legacy.inner.put(org_key("acme"), acme, None)
        repo = make_factory().org_repo()

        def rename(org: Optional[OrgData]) -> OrgData:
            return OrgData.model_validate(make_org("acme-2", "Acme"))

        with pytest.raises(RecordValidationError, match="does not match key"):
            repo.upsert("acme", rename)
        assert legacy.calls["put"] == 0

    def test_duplicate_hunt_rejected(self, make_factory, legacy: RecordingStore, acme: dict) -> None:  # noqa: ANN001
        legacy.inner.put(org_key("acme"), acme, None)
        with pytest.raises(RecordValidationError, match="duplicate hunt id"):
            make_factory().org_repo().upsert("acme", add_hunt("spring-hunt"))
        assert legacy.calls["put"] == 0

    def test_concurrent_upserts_same_token(
        self, make_factory, primary: RecordingStore, acme: dict  # noqa: ANN001
    ) -> None:
        """Two upserts pinned to the same version: one wins, one conflicts."""
        primary.inner.put(org_key("acme"), acme, None)
        repo = make_factory(primary_store_enabled=True, read_primary_first=True).org_repo()
        initial = repo.get_versioned("acme")

        barrier = threading.Barrier(2)
        results: dict[str, object] = {}

        def worker(name: str) -> None:
            barrier.wait()
            try:
                results[name] = repo.upsert("acme", add_hunt(name), expected_version=initial.version)
            except VersionConflictError as e:
                results[name] = e

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("alpha", "bravo")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        conflicts = [r for r in results.values() if isinstance(r, VersionConflictError)]
        winners = [r for r in results.values() if not isinstance(r, VersionConflictError)]
        assert len(conflicts) == 1
        assert len(winners) == 1
        stored = repo.get("acme")
        assert len(stored.hunts) == 2
        assert stored.hunts[-1].id in ("alpha", "bravo")

    @pytest.mark.parametrize("migrated", [False, True], ids=["legacy-only", "migrated"])
    @pytest.mark.parametrize("read_primary_first", [False, True], ids=["legacy-read", "fallback-read"])
    def test_read_token_accepted_while_dual_writing(
        self,
        make_factory,  # noqa: ANN001
        primary: RecordingStore,
        legacy: RecordingStore,
        acme: dict,
        read_primary_first: bool,
        migrated: bool,
    ) -> None:
        """The token from get_versioned works whichever store served the read."""
        legacy.inner.put(org_key("acme"), acme, None)
        if migrated:
            primary.inner.put(org_key("acme"), acme, None)
        factory = make_factory(
            primary_store_enabled=True, dual_write_enabled=True, read_primary_first=read_primary_first
        )
        repo = factory.org_repo()

        current = repo.get_versioned("acme")
        factory.fallback.drain()
        updated = repo.upsert("acme", add_hunt("summer"), expected_version=current.version)

        assert [h.id for h in updated.value.hunts] == ["spring-hunt", "summer"]
        assert updated.served_by == "memory-primary"
        assert primary.get(org_key("acme")).payload == legacy.get(org_key("acme")).payload

    @pytest.mark.parametrize("migrated", [False, True], ids=["legacy-only", "migrated"])
    @pytest.mark.parametrize("read_primary_first", [False, True], ids=["legacy-read", "fallback-read"])
    def test_stale_token_rejected_while_dual_writing(
        self,
        make_factory,  # noqa: ANN001
        primary: RecordingStore,
        legacy: RecordingStore,
        acme: dict,
        read_primary_first: bool,
        migrated: bool,
    ) -> None:
        legacy.inner.put(org_key("acme"), acme, None)
        if migrated:
            primary.inner.put(org_key("acme"), acme, None)
        factory = make_factory(
            primary_store_enabled=True, dual_write_enabled=True, read_primary_first=read_primary_first
        )
        repo = factory.org_repo()
        stale = repo.get_versioned("acme")
        factory.fallback.drain()
        repo.upsert("acme", add_hunt("first"))
        legacy_puts = legacy.calls["put"]

        with pytest.raises(VersionConflictError):
            repo.upsert("acme", add_hunt("second"), expected_version=stale.version)

        assert legacy.calls["put"] == legacy_puts
        assert [h.id for h in repo.get("acme").hunts] == ["spring-hunt", "first"]

    @pytest.mark.parametrize("migrated", [False, True], ids=["legacy-only", "migrated"])
    @pytest.mark.parametrize("read_primary_first", [False, True], ids=["legacy-read", "fallback-read"])
    def test_concurrent_dual_writes_same_token(
        self,
        make_factory,  # noqa: ANN001
        primary: RecordingStore,
        legacy: RecordingStore,
        acme: dict,
        read_primary_first: bool,
        migrated: bool,
    ) -> None:
        """One pinned writer wins; the loser never touches the legacy store."""
        legacy.inner.put(org_key("acme"), acme, None)
        if migrated:
            primary.inner.put(org_key("acme"), acme, None)
        factory = make_factory(
            primary_store_enabled=True, dual_write_enabled=True, read_primary_first=read_primary_first
        )
        repo = factory.org_repo()
        initial = repo.get_versioned("acme")
        factory.fallback.drain()
        legacy_puts = legacy.calls["put"]

        barrier = threading.Barrier(2)
        results: dict[str, object] = {}

        def worker(name: str) -> None:
            barrier.wait()
            try:
                results[name] = repo.upsert("acme", add_hunt(name), expected_version=initial.version)
            except VersionConflictError as e:
                results[name] = e

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("alpha", "bravo")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [name for name, r in results.items() if not isinstance(r, VersionConflictError)]
        assert len(winners) == 1
        assert legacy.calls["put"] == legacy_puts + 1
        for store in (primary, legacy):
            hunts = store.get(org_key("acme")).payload["hunts"]
            assert [h["id"] for h in hunts] == ["spring-hunt", winners[0]]

    def test_unpinned_loser_reloads_and_succeeds(
        self, make_factory, primary: RecordingStore, acme: dict  # noqa: ANN001
    ) -> None:
        primary.inner.put(org_key("acme"), acme, None)
        repo = make_factory(primary_store_enabled=True, read_primary_first=True).org_repo()

        def racing_write(key) -> None:  # noqa: ANN001
            current = primary.inner.get(key)
            payload = dict(current.payload)
            payload["hunts"] = [*payload["hunts"], make_hunt("racer", "Racer", "2025-07-01")]
            primary.inner.put(key, payload, current.version)

        primary.before_put = racing_write
        result = repo.upsert("acme", add_hunt("mine"))
        assert [h.id for h in result.value.hunts] == ["spring-hunt", "racer", "mine"]

    def test_list_orgs(self, make_factory, legacy: RecordingStore, acme: dict, globex: dict) -> None:  # noqa: ANN001
        legacy.inner.put(org_key("globex"), globex, None)
        legacy.inner.put(org_key("acme"), acme, None)
        legacy.inner.put(org_key("broken"), {"org": {}}, None)
        summaries = make_factory().org_repo().list_orgs()
        assert [(s.org_slug, s.org_name, s.hunt_count) for s in summaries] == [
            ("acme", "Acme Corp", 1),
            ("globex", "Globex", 1),
        ]


class TestEventRepository:
    """EventRepo.list_for_date."""

    def test_from_registry_before_migration(self, make_factory, seeded_legacy: RecordingStore) -> None:  # noqa: ANN001
        events = make_factory().event_repo().list_for_date("2025-04-12")
        assert [(e.org_slug, e.hunt_id, e.hunt_name, e.status) for e in events] == [
            ("acme", "spring-hunt", "Spring Hunt", "scheduled"),
            ("globex", "city-quest", "City Quest", "active"),
        ]

    def test_other_dates_empty(self, make_factory, seeded_legacy: RecordingStore) -> None:  # noqa: ANN001
        assert make_factory().event_repo().list_for_date("2025-04-13") == []

    def test_index_entries_and_registry_merge(
        self, make_factory, seeded_legacy: RecordingStore, primary: RecordingStore  # noqa: ANN001
    ) -> None:
        primary.inner.put(
            date_index_key("2025-04-12", "acme", "spring-hunt"),
            {"date": "2025-04-12", "orgSlug": "acme", "huntId": "spring-hunt", "huntName": "Renamed", "status": "active"},
            None,
        )
        repo = make_factory(primary_store_enabled=True, dual_write_enabled=True, read_primary_first=True).event_repo()
        events = repo.list_for_date("2025-04-12")
        assert [(e.org_slug, e.hunt_name) for e in events] == [("acme", "Renamed"), ("globex", "City Quest")]

    def test_dangling_registry_reference_skipped(
        self, make_factory, legacy: RecordingStore, acme: dict  # noqa: ANN001
    ) -> None:
        registry = {
            "organizations": [{"orgSlug": "acme", "orgName": "Acme Corp"}],
            "byDate": {"2025-04-12": [{"orgSlug": "acme", "huntId": "gone"}, {"orgSlug": "acme", "huntId": "spring-hunt"}]},
        }
        legacy.inner.put(REGISTRY_KEY, registry, None)
        legacy.inner.put(org_key("acme"), acme, None)
        events = make_factory().event_repo().list_for_date("2025-04-12")
        assert [e.hunt_id for e in events] == ["spring-hunt"]


class TestIndexRepository:
    """IndexRepo.upsert_date_entry."""

    def test_upsert_entry_dual_write(
        self, make_factory, seeded_legacy: RecordingStore, primary: RecordingStore  # noqa: ANN001
    ) -> None:
        repo = make_factory(primary_store_enabled=True, dual_write_enabled=True, read_primary_first=True).index_repo()
        result = repo.upsert_date_entry("2025-04-12", "acme", "spring-hunt")
        key = date_index_key("2025-04-12", "acme", "spring-hunt")
        assert result.written_to == ["primary", "legacy"]
        assert primary.get(key).payload["huntName"] == "Spring Hunt"
        assert seeded_legacy.get(key).payload == primary.get(key).payload

    def test_upsert_entry_idempotent(self, make_factory, seeded_legacy: RecordingStore) -> None:  # noqa: ANN001
        repo = make_factory().index_repo()
        first = repo.upsert_date_entry("2025-04-12", "acme", "spring-hunt")
        second = repo.upsert_date_entry("2025-04-12", "acme", "spring-hunt")
        assert first.payload == second.payload
        assert first.version != second.version

    def test_unknown_hunt_rejected(self, make_factory, seeded_legacy: RecordingStore) -> None:  # noqa: ANN001
        with pytest.raises(RecordValidationError, match="hunt 'nope' does not exist"):
            make_factory().index_repo().upsert_date_entry("2025-04-12", "acme", "nope")
        assert seeded_legacy.calls["put"] == 0

    def test_unknown_org_rejected(self, make_factory, seeded_legacy: RecordingStore) -> None:  # noqa: ANN001
        with pytest.raises(RecordValidationError, match="does not exist"):
            make_factory().index_repo().upsert_date_entry("2025-04-12", "initech", "h1")
