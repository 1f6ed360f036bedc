"""Shared fixtures and the RecordingStore test double."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from threading import Lock
from typing import Any, Callable, Iterator, Optional

import pytest

from huntstore.core.config import FlagSource
from huntstore.db.factory import StoreBundle
from huntstore.db.memory import InMemoryStore
from huntstore.models.config import StoreFlags
from huntstore.models.records import REGISTRY_KEY, RecordKey, Table, VersionedRecord, org_key
from huntstore.repository.factory import RepositoryFactory


class RecordingStore:
    """StoreAdapter wrapper that counts calls and injects failures.

    Wraps an ``InMemoryStore`` so tests can assert on call counts (e.g. the
    legacy store was never written) and make a chosen call fail.
    """

    def __init__(self, inner: Optional[InMemoryStore] = None, name: str = "memory") -> None:
        self.inner = inner or InMemoryStore(name)
        self.calls: Counter[str] = Counter()
        self.put_keys: list[RecordKey] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.before_put: Optional[Callable[[RecordKey], None]] = None
        self._lock = Lock()

    @property
    def backend_name(self) -> str:
        return self.inner.backend_name

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next *times* calls of *operation* raise *error*."""
        self.failures[operation].extend([error] * times)

    def _enter(self, operation: str) -> None:
        with self._lock:
            self.calls[operation] += 1
            pending = self.failures[operation]
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error

    def get(self, key: RecordKey, *, correlation_id: Optional[str] = None) -> Optional[VersionedRecord]:
        self._enter("get")
        return self.inner.get(key, correlation_id=correlation_id)

    def put(
        self,
        key: RecordKey,
        payload: dict[str, Any],
        expected_version: Optional[str],
        *,
        correlation_id: Optional[str] = None,
    ) -> str:
        self._enter("put")
        hook, self.before_put = self.before_put, None
        if hook is not None:
            hook(key)
        version = self.inner.put(key, payload, expected_version, correlation_id=correlation_id)
        with self._lock:
            self.put_keys.append(key)
        return version

    def query(
        self, table: Table, partition_prefix: str = "", *, correlation_id: Optional[str] = None
    ) -> Iterator[VersionedRecord]:
        self._enter("query")
        return self.inner.query(table, partition_prefix, correlation_id=correlation_id)

    def ping(self) -> None:
        self._enter("ping")
        self.inner.ping()

    @property
    def writes(self) -> int:
        return len(self.put_keys)

    def reset_counts(self) -> None:
        with self._lock:
            self.calls.clear()
            self.put_keys.clear()


# ===== Document builders =====


def make_hunt(hunt_id: str, name: str, start: str, status: str = "scheduled", **extra: Any) -> dict[str, Any]:
    """A hunt as the legacy application stores it."""
    return {
        "id": hunt_id,
        "slug": hunt_id,
        "name": name,
        "startDate": start,
        "endDate": start,
        "status": status,
        "stops": [{"id": "stop-1", "title": "Town hall", "clue": "Where the mayor works"}],
        **extra,
    }


def make_org(slug: str, name: str, hunts: Optional[list[dict[str, Any]]] = None) -> dict[str, Any]:
    """An organization document as the legacy application stores it."""
    return {
        "schemaVersion": "1.0.0",
        "updatedAt": "2025-03-01T12:00:00.000Z",
        "org": {
            "orgSlug": slug,
            "orgName": name,
            "contacts": [{"firstName": "Pat", "email": f"ops@{slug}.test"}],
            "settings": {"defaultTeams": ["RED", "BLUE"]},
        },
        "hunts": hunts or [],
        "audit": {"createdBy": "import"},
    }


def make_registry(orgs: list[dict[str, Any]]) -> dict[str, Any]:
    """The registry singleton listing *orgs* and indexing their hunts by date."""
    by_date: dict[str, list[dict[str, str]]] = {}
    for org in orgs:
        for hunt in org["hunts"]:
            by_date.setdefault(hunt["startDate"], []).append(
                {"orgSlug": org["org"]["orgSlug"], "huntId": hunt["id"]}
            )
    return {
        "schemaVersion": "1.0.0",
        "updatedAt": "2025-03-01T12:00:00.000Z",
        "app": {"metadata": {"name": "Scavenger Hunts"}, "features": {"enableSponsors": False}},
        "organizations": [
            {
                "orgSlug": org["org"]["orgSlug"],
                "orgName": org["org"]["orgName"],
                "orgBlobKey": f"orgs/{org['org']['orgSlug']}.json",
                "summary": {"huntsTotal": len(org["hunts"])},
            }
            for org in orgs
        ],
        "byDate": by_date,
    }


def seed_legacy(store: Any, orgs: list[dict[str, Any]], registry: Optional[dict[str, Any]] = None) -> None:
    """Write the registry and organization documents into a store."""
    store.put(REGISTRY_KEY, registry or make_registry(orgs), None)
    for org in orgs:
        store.put(org_key(org["org"]["orgSlug"]), org, None)


# ===== Fixtures =====


@pytest.fixture(autouse=True)
def _quiet_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of flag and config loading."""
    for name in (
        "PRIMARY_STORE_ENABLED",
        "DUAL_WRITE_ENABLED",
        "READ_PRIMARY_FIRST",
        "LOCAL_EMULATOR_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    logging.getLogger("huntstore").setLevel(logging.DEBUG)


@pytest.fixture
def primary() -> RecordingStore:
    return RecordingStore(name="memory-primary")


@pytest.fixture
def legacy() -> RecordingStore:
    return RecordingStore(name="memory-legacy")


@pytest.fixture
def stores(primary: RecordingStore, legacy: RecordingStore) -> StoreBundle:
    return StoreBundle(primary=primary, legacy=legacy)


@pytest.fixture
def acme() -> dict[str, Any]:
    return make_org("acme", "Acme Corp", [make_hunt("spring-hunt", "Spring Hunt", "2025-04-12")])


@pytest.fixture
def globex() -> dict[str, Any]:
    return make_org(
        "globex", "Globex", [make_hunt("city-quest", "City Quest", "2025-04-12", status="active")]
    )


@pytest.fixture
def seeded_legacy(legacy: RecordingStore, acme: dict, globex: dict) -> RecordingStore:
    """Legacy store holding acme and globex (one hunt each); call counts reset."""
    seed_legacy(legacy, [acme, globex])
    legacy.reset_counts()
    return legacy


def flag_source(**flags: bool) -> FlagSource:
    """A FlagSource with an explicit snapshot (never reads the environment)."""
    return FlagSource(initial=StoreFlags(**flags), loader=lambda: StoreFlags(**flags))


@pytest.fixture
def make_factory(stores: StoreBundle) -> Iterator[Callable[..., RepositoryFactory]]:
    """Build RepositoryFactory instances over the recording stores."""
    created: list[RepositoryFactory] = []

    def _make(write_order: str = "primary-first", **flags: bool) -> RepositoryFactory:
        factory = RepositoryFactory(stores, flag_source(**flags), write_order=write_order)
        created.append(factory)
        return factory

    yield _make
    for factory in created:
        factory.close()
