"""Dual-write coordinator.

Drives one logical write across the primary and legacy stores in a fixed
order. The first store is authoritative: if its write fails nothing else
happens. The second store is best-effort: its failure is recorded as a
``PartialWriteFailure`` on the result and logged, never raised and never
retried inside the request.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from huntstore.models.errors import PartialWriteFailure, StoreError, VersionConflictError
from huntstore.models.records import ABSENT_VERSION, RecordKey, VersionedRecord, VersionToken

if TYPE_CHECKING:
    from huntstore.db.protocols import StoreAdapter

logger = logging.getLogger(__name__)

PayloadMutator = Callable[[Optional[dict[str, Any]]], dict[str, Any]]
"""Receives the current payload (``None`` if the key is new), returns the new one."""

PRIMARY = "primary"
LEGACY = "legacy"


@dataclass(frozen=True)
class StoreTarget:
    """An adapter together with the role it plays in the migration."""

    role: str
    adapter: StoreAdapter

    @property
    def name(self) -> str:
        return f"{self.role}:{self.adapter.backend_name}"


@dataclass
class WriteResult:
    """Outcome of a coordinated write.

    Attributes:
        key: Key that was written.
        payload: Payload as written to the first store.
        version: Token returned by the first store.
        backend: Backend name of the first store.
        written_to: Roles that accepted the write, in write order.
        partial_failure: Set when the second store rejected the write.
        attempts: 1, or 2 when a version conflict forced a reload.
    """

    key: RecordKey
    payload: dict[str, Any]
    version: VersionToken
    backend: str
    written_to: list[str] = field(default_factory=list)
    partial_failure: Optional[PartialWriteFailure] = None
    attempts: int = 1

    @property
    def is_partial(self) -> bool:
        return self.partial_failure is not None


class DualWriteCoordinator:
    """
    Ordered write across one or two stores with optimistic concurrency.

    With a single target this is a plain read-modify-write that still gets
    the one-shot conflict reload, so direct writes and dual writes behave
    the same towards callers.

    Usage:
        coordinator = DualWriteCoordinator.for_order(primary, legacy, "primary-first")
        result = coordinator.write(org_key("acme"), add_hunt)
    """

    def __init__(self, first: StoreTarget, second: Optional[StoreTarget] = None) -> None:
        self.first = first
        self.second = second

    @classmethod
    def for_order(
        cls,
        primary: StoreAdapter,
        legacy: StoreAdapter,
        write_order: str = "primary-first",
    ) -> DualWriteCoordinator:
        """Build a two-store coordinator for the configured ordering."""
        primary_target = StoreTarget(PRIMARY, primary)
        legacy_target = StoreTarget(LEGACY, legacy)
        if write_order == "legacy-first":
            return cls(legacy_target, primary_target)
        return cls(primary_target, legacy_target)

    @property
    def targets(self) -> list[StoreTarget]:
        return [self.first] if self.second is None else [self.first, self.second]

    def write(
        self,
        key: RecordKey,
        mutate: PayloadMutator,
        *,
        expected_version: Optional[VersionToken] = None,
        correlation_id: Optional[str] = None,
    ) -> WriteResult:
        """
        Read, mutate and write *key*.

        Args:
            key: Record key.
            mutate: Produces the new payload from the current one.
            expected_version: Token the caller read, from whichever store
                served the read. A stale token conflicts without calling
                *mutate*; the one reload only re-checks that the token is
                still current.
            correlation_id: Passed through to adapters for logging.

        Returns:
            WriteResult (possibly carrying a partial failure).

        Raises:
            VersionConflictError: Stale ``expected_version``, or a conflict
                on the first store that survives one reload.
            StoreUnavailableError: First store unreachable.
        """
        attempts = 0
        while True:
            attempts += 1
            first_record = self.first.adapter.get(key, correlation_id=correlation_id)
            second_record, second_error = self._load_second(key, correlation_id)

            if expected_version is not None:
                condition, base = self._pinned_condition(
                    key, expected_version, first_record, second_record, correlation_id
                )
            else:
                condition = first_record.version if first_record else ABSENT_VERSION
                base = first_record or second_record

            payload = mutate(copy.deepcopy(base.payload) if base else None)

            try:
                version = self.first.adapter.put(
                    key, payload, condition, correlation_id=correlation_id
                )
                break
            except VersionConflictError:
                if attempts >= 2:
                    logger.info(
                        f"Write to {key} lost the race on {self.first.name} "
                        f"after {attempts} attempt(s)",
                        extra={"correlation_id": correlation_id},
                    )
                    raise
                logger.info(
                    f"Version conflict on {key} at {self.first.name}, reloading once",
                    extra={"correlation_id": correlation_id},
                )

        result = WriteResult(
            key=key,
            payload=payload,
            version=version,
            backend=self.first.adapter.backend_name,
            written_to=[self.first.role],
            attempts=attempts,
        )
        if self.second is None:
            return result

        if second_error is None:
            second_error = self._write_second(key, payload, second_record, correlation_id)
        if second_error is None:
            result.written_to.append(self.second.role)
        else:
            result.partial_failure = PartialWriteFailure(
                entity=key.table.value,
                key=str(key),
                backend=self.second.name,
                error_class=type(second_error).__name__,
                message=str(second_error),
            )
            logger.warning(
                f"Partial write: entity={key.table.value} key={key} "
                f"backend={self.second.name} error={type(second_error).__name__}: {second_error}",
                extra={"correlation_id": correlation_id},
            )
        return result

    def _pinned_condition(
        self,
        key: RecordKey,
        expected_version: VersionToken,
        first_record: Optional[VersionedRecord],
        second_record: Optional[VersionedRecord],
        correlation_id: Optional[str],
    ) -> tuple[VersionToken, Optional[VersionedRecord]]:
        """Translate a caller-held token into the first store's write condition.

        The caller may have read the record from either store, depending on
        the route in force. A token from the second store is honoured only
        while the first store is missing the record or holds the same
        document; otherwise someone wrote in between and the caller's copy
        is stale.

        Returns:
            The condition for the first store and the record the caller's
            token refers to.
        """
        if expected_version == ABSENT_VERSION:
            if first_record is None and second_record is None:
                return ABSENT_VERSION, None
        elif first_record is not None and expected_version == first_record.version:
            return expected_version, first_record
        elif second_record is not None and expected_version == second_record.version:
            if first_record is None:
                return ABSENT_VERSION, second_record
            if first_record.payload == second_record.payload:
                return first_record.version, second_record

        found = first_record.version if first_record else (second_record.version if second_record else None)
        logger.info(
            f"Write to {key} presented a stale version token",
            extra={"correlation_id": correlation_id},
        )
        raise VersionConflictError(str(key), expected_version, found, self.first.adapter.backend_name)

    def _load_second(
        self, key: RecordKey, correlation_id: Optional[str]
    ) -> tuple[Optional[VersionedRecord], Optional[StoreError]]:
        if self.second is None:
            return None, None
        try:
            return self.second.adapter.get(key, correlation_id=correlation_id), None
        except StoreError as e:
            logger.debug(
                f"Could not load {key} from {self.second.name}: {e}",
                extra={"correlation_id": correlation_id},
            )
            return None, e

    def _write_second(
        self,
        key: RecordKey,
        payload: dict[str, Any],
        observed: Optional[VersionedRecord],
        correlation_id: Optional[str],
    ) -> Optional[StoreError]:
        assert self.second is not None
        condition = observed.version if observed else ABSENT_VERSION
        try:
            self.second.adapter.put(key, payload, condition, correlation_id=correlation_id)
        except StoreError as e:
            return e
        return None
