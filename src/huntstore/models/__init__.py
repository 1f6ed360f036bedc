"""Pydantic models for records, documents, configuration and errors."""

from huntstore.models.config import AppConfig, MigrationConfig, RetryConfig, StoreFlags
from huntstore.models.errors import (
    PartialWriteFailure,
    RecordValidationError,
    StoreError,
    StoreUnavailableError,
    TransientStoreError,
    VersionConflictError,
)
from huntstore.models.org import (
    DateIndexEntry,
    EventSummary,
    Hunt,
    HuntRef,
    OrganizationSummary,
    OrgData,
    OrgProfile,
    OrgSummary,
    RegistryData,
)
from huntstore.models.records import (
    ABSENT_VERSION,
    REGISTRY_KEY,
    RecordKey,
    Table,
    VersionedRecord,
    VersionToken,
    date_index_key,
    org_key,
    registry_entry_key,
)

__all__ = [
    # Records
    "ABSENT_VERSION",
    "REGISTRY_KEY",
    "RecordKey",
    "Table",
    "VersionToken",
    "VersionedRecord",
    "date_index_key",
    "org_key",
    "registry_entry_key",
    # Documents
    "DateIndexEntry",
    "EventSummary",
    "Hunt",
    "HuntRef",
    "OrgData",
    "OrgProfile",
    "OrgSummary",
    "OrganizationSummary",
    "RegistryData",
    # Config
    "AppConfig",
    "MigrationConfig",
    "RetryConfig",
    "StoreFlags",
    # Errors
    "PartialWriteFailure",
    "RecordValidationError",
    "StoreError",
    "StoreUnavailableError",
    "TransientStoreError",
    "VersionConflictError",
]
