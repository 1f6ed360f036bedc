"""Repository factory: per-call routing on the live flag snapshot.

Routing table (``PRIMARY_STORE_ENABLED`` / ``DUAL_WRITE_ENABLED`` /
``READ_PRIMARY_FIRST``)::

    primary  dual  primary-first | reads     writes
    -------  ----  ------------- | --------  -------------------
    off      any   any           | legacy    legacy
    on       off   off           | legacy    legacy
    on       off   on            | primary   primary
    on       on    off           | legacy    both (coordinator)
    on       on    on            | fallback  both (coordinator)
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from enum import Enum
from threading import Lock
from typing import TYPE_CHECKING, Optional

from huntstore.repository.coordinator import LEGACY, PRIMARY, DualWriteCoordinator, StoreTarget
from huntstore.repository.fallback import DirectReader, ReadThroughFallback
from huntstore.repository.repos import EventRepository, IndexRepository, OrgRepository

if TYPE_CHECKING:
    from huntstore.core.config import FlagSource
    from huntstore.db.factory import StoreBundle
    from huntstore.models.config import AppConfig, StoreFlags
    from huntstore.repository.repos import RecordReader

logger = logging.getLogger(__name__)


class ReadRoute(str, Enum):
    LEGACY = "legacy"
    PRIMARY = "primary"
    FALLBACK = "fallback"


class WriteRoute(str, Enum):
    LEGACY = "legacy"
    PRIMARY = "primary"
    DUAL = "dual"


def resolve_routes(flags: StoreFlags) -> tuple[ReadRoute, WriteRoute]:
    """Map a flag snapshot to its read and write routes."""
    if not flags.primary_store_enabled:
        return ReadRoute.LEGACY, WriteRoute.LEGACY
    if flags.dual_write_enabled:
        read = ReadRoute.FALLBACK if flags.read_primary_first else ReadRoute.LEGACY
        return read, WriteRoute.DUAL
    if flags.read_primary_first:
        return ReadRoute.PRIMARY, WriteRoute.PRIMARY
    return ReadRoute.LEGACY, WriteRoute.LEGACY


class RepositoryFactory:
    """
    Hands out repositories whose every call is routed on the current flags.

    The factory is the only place that knows about both stores. Flag
    changes published through the ``FlagSource`` apply from the next call;
    a call already in progress keeps the route it started with.

    Usage:
        factory = RepositoryFactory(stores, FlagSource())
        org = factory.org_repo().get("acme")
    """

    def __init__(
        self,
        stores: StoreBundle,
        flags: FlagSource,
        *,
        write_order: str = "primary-first",
        backfill_executor: Optional[Executor] = None,
        backfill_workers: int = 2,
    ) -> None:
        self.stores = stores
        self.flags = flags
        self.write_order = write_order
        self._fallback = ReadThroughFallback(
            stores.primary,
            stores.legacy,
            executor=backfill_executor,
            max_workers=backfill_workers,
        )
        self._lock = Lock()
        self._last_routes: Optional[tuple[ReadRoute, WriteRoute]] = None

    @classmethod
    def from_config(cls, config: AppConfig, flags: FlagSource) -> RepositoryFactory:
        """Build stores from configuration and wrap them in a factory."""
        from huntstore.db.factory import create_stores

        return cls(
            create_stores(config, flags.current),
            flags,
            write_order=config.write_order,
            backfill_workers=config.backfill_workers,
        )

    @property
    def fallback(self) -> ReadThroughFallback:
        return self._fallback

    def routes(self) -> tuple[ReadRoute, WriteRoute]:
        """Routes for the current flag snapshot."""
        routes = resolve_routes(self.flags.current)
        with self._lock:
            changed = routes != self._last_routes
            self._last_routes = routes
        if changed:
            logger.info(f"Repository routing: reads={routes[0].value} writes={routes[1].value}")
        return routes

    def reader(self) -> RecordReader:
        read_route, _ = self.routes()
        if read_route is ReadRoute.FALLBACK:
            return self._fallback
        if read_route is ReadRoute.PRIMARY:
            return DirectReader(self.stores.primary)
        return DirectReader(self.stores.legacy)

    def writer(self) -> DualWriteCoordinator:
        _, write_route = self.routes()
        if write_route is WriteRoute.DUAL:
            return DualWriteCoordinator.for_order(
                self.stores.primary, self.stores.legacy, self.write_order
            )
        if write_route is WriteRoute.PRIMARY:
            return DualWriteCoordinator(StoreTarget(PRIMARY, self.stores.primary))
        return DualWriteCoordinator(StoreTarget(LEGACY, self.stores.legacy))

    def org_repo(self) -> OrgRepository:
        return OrgRepository(self)

    def event_repo(self) -> EventRepository:
        return EventRepository(self)

    def index_repo(self) -> IndexRepository:
        return IndexRepository(self)

    def close(self) -> None:
        """Wait for pending backfills and release the backfill executor."""
        self._fallback.close()
