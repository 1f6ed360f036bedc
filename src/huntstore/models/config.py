"""Configuration models for huntstore."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreFlags(BaseSettings):
    """Live routing flags for the repository layer.

    Read from unprefixed environment variables so operators can flip them
    with the names documented for the cutover runbook. Instances are
    immutable snapshots; see ``huntstore.core.config.FlagSource`` for reload.

    Attributes:
        primary_store_enabled: The primary (target) store takes part at all.
        dual_write_enabled: Writes go to both stores via the coordinator.
        read_primary_first: Reads try primary before legacy.
        local_emulator_enabled: Use local emulated backends under data_dir.
    """

    primary_store_enabled: bool = Field(default=False, description="PRIMARY_STORE_ENABLED")
    dual_write_enabled: bool = Field(default=False, description="DUAL_WRITE_ENABLED")
    read_primary_first: bool = Field(default=False, description="READ_PRIMARY_FIRST")
    local_emulator_enabled: bool = Field(default=False, description="LOCAL_EMULATOR_ENABLED")

    model_config = SettingsConfigDict(
        env_prefix="",
        frozen=True,
        extra="ignore",
    )

    def enabled(self) -> list[str]:
        """Names of the flags that are switched on."""
        return [name for name, value in self.model_dump().items() if value]


class RetryConfig(BaseModel):
    """Bounded exponential backoff for transient backend errors.

    Attributes:
        base_delay: First backoff delay in seconds.
        max_delay: Ceiling for a single backoff delay in seconds.
        max_retries: Retries after the first attempt before giving up.
        call_timeout: Per backend call timeout in seconds.
    """

    base_delay: float = Field(default=0.2, ge=0, description="First backoff delay (s)")
    max_delay: float = Field(default=5.0, ge=0, description="Backoff ceiling (s)")
    max_retries: int = Field(default=5, ge=0, le=20, description="Retries before Unavailable")
    call_timeout: float = Field(default=5.0, gt=0, description="Per-call timeout (s)")


class MigrationConfig(BaseModel):
    """Defaults for the offline backfill tool.

    Attributes:
        concurrency: Worker pool width.
        checkpoint_path: Checkpoint file (defaults to data_dir/migration-checkpoint.json).
    """

    concurrency: int = Field(default=3, ge=1, le=32, description="Worker pool width")
    checkpoint_path: Optional[Path] = Field(default=None, description="Checkpoint file")


class AppConfig(BaseSettings):
    """Main application configuration.

    Loads configuration from environment variables with HUNTSTORE_ prefix.

    Attributes:
        data_dir: Directory for local data.
        primary_db_path: SQLite file backing the primary table store.
        legacy_dir: Root directory of the legacy blob store.
        write_order: Which store a dual write hits first.
        backfill_workers: Threads used for opportunistic backfill.
        retry: Backoff settings shared by all adapters.
        migration: Backfill tool defaults.
        log_level: Root log level for the CLI.
        log_file: Also write logs to this file.
    """

    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".huntstore",
        description="Data directory",
    )
    primary_db_path: Optional[Path] = Field(default=None, description="Primary store database")
    legacy_dir: Optional[Path] = Field(default=None, description="Legacy blob root")
    write_order: Literal["primary-first", "legacy-first"] = Field(
        default="primary-first", description="Dual-write ordering"
    )
    backfill_workers: int = Field(default=2, ge=1, le=16, description="Backfill threads")
    retry: RetryConfig = Field(default_factory=RetryConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    log_level: str = Field(default="INFO", description="Log level")
    log_file: Optional[Path] = Field(default=None, description="Optional log file")

    model_config = SettingsConfigDict(
        env_prefix="HUNTSTORE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    def _root(self, flags: Optional[StoreFlags]) -> Path:
        if flags is not None and flags.local_emulator_enabled:
            return self.data_dir / "emulator"
        return self.data_dir

    def primary_database_path(self, flags: Optional[StoreFlags] = None) -> Path:
        """Primary store path; emulator mode keeps everything under data_dir/emulator."""
        if flags is not None and flags.local_emulator_enabled:
            return self._root(flags) / "primary.db"
        return self.primary_db_path or (self.data_dir / "primary.db")

    def legacy_root(self, flags: Optional[StoreFlags] = None) -> Path:
        """Legacy blob root; emulator mode keeps everything under data_dir/emulator."""
        if flags is not None and flags.local_emulator_enabled:
            return self._root(flags) / "legacy"
        return self.legacy_dir or (self.data_dir / "legacy")

    @property
    def checkpoint_path(self) -> Path:
        return self.migration.checkpoint_path or (self.data_dir / "migration-checkpoint.json")
