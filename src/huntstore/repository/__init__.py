"""Repository ports, dual-write coordination and read-through fallback."""

from huntstore.repository.coordinator import (
    DualWriteCoordinator,
    PayloadMutator,
    StoreTarget,
    WriteResult,
)
from huntstore.repository.factory import ReadRoute, RepositoryFactory, WriteRoute, resolve_routes
from huntstore.repository.fallback import DirectReader, ReadResult, ReadThroughFallback
from huntstore.repository.repos import (
    EventRepository,
    IndexRepository,
    OrgRepository,
    Versioned,
    new_correlation_id,
)

__all__ = [
    "DirectReader",
    "DualWriteCoordinator",
    "EventRepository",
    "IndexRepository",
    "OrgRepository",
    "PayloadMutator",
    "ReadResult",
    "ReadRoute",
    "ReadThroughFallback",
    "RepositoryFactory",
    "StoreTarget",
    "Versioned",
    "WriteResult",
    "WriteRoute",
    "new_correlation_id",
    "resolve_routes",
]
