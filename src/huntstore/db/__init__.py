"""Storage layer: adapter Protocols, backend implementations and the store factory.

Usage:
    # Protocol types (for type hints in business logic)
    from huntstore.db.protocols import StoreAdapter, OrgRepo

    # Concrete adapters (for composition roots)
    from huntstore.db.sqlite import SQLiteTableStore
    from huntstore.db.blob import FileBlobStore

    # Factory (convenience)
    from huntstore.db.factory import create_stores
"""

from huntstore.db.blob import FileBlobStore
from huntstore.db.factory import StoreBundle, create_memory_stores, create_stores
from huntstore.db.memory import InMemoryStore
from huntstore.db.protocols import EventRepo, IndexRepo, OrgRepo, StoreAdapter
from huntstore.db.retry import call_with_retry
from huntstore.db.sqlite import Database, SQLiteTableStore

__all__ = [
    # Protocols
    "EventRepo",
    "IndexRepo",
    "OrgRepo",
    "StoreAdapter",
    # Adapters
    "Database",
    "FileBlobStore",
    "InMemoryStore",
    "SQLiteTableStore",
    # Factory
    "StoreBundle",
    "create_memory_stores",
    "create_stores",
    # Retry
    "call_with_retry",
]
