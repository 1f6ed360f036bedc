"""Error taxonomy for the storage layer.

``NotFound`` is deliberately absent: a missing key is a valid outcome and
adapters return ``None`` for it. Everything else a caller can act on is a
``StoreError`` subclass carrying a machine-readable ``error_code``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class StoreError(Exception):
    """Base exception raised by store and repository operations.

    Attributes:
        error_code: Machine-readable error code (e.g. ``"version_conflict"``).
        message: Human-readable error description.
        backend: Name of the backend that raised the error.
    """

    def __init__(self, error_code: str, message: str, backend: str = "unknown") -> None:
        self.error_code: str = error_code
        self.message: str = message
        self.backend: str = backend
        super().__init__(f"[{backend}] {error_code}: {message}")


class VersionConflictError(StoreError):
    """The presented version token does not match the stored one."""

    def __init__(
        self,
        key: str,
        expected: Optional[str],
        actual: Optional[str],
        backend: str = "unknown",
    ) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            "version_conflict",
            f"{key}: expected version {expected!r}, found {actual!r}",
            backend,
        )


class StoreUnavailableError(StoreError):
    """Backend unreachable or throttled after bounded retries."""

    def __init__(self, message: str, backend: str = "unknown") -> None:
        super().__init__("unavailable", message, backend)


class TransientStoreError(StoreError):
    """A retryable backend hiccup. Never escapes an adapter as such."""

    def __init__(self, message: str, backend: str = "unknown") -> None:
        super().__init__("transient", message, backend)


class RecordValidationError(StoreError):
    """A record does not match the expected schema.

    Attributes:
        key: Record key or slug the problem was found on.
        errors: Individual validation messages.
    """

    def __init__(self, key: str, errors: list[str], backend: str = "unknown") -> None:
        self.key = key
        self.errors = errors
        super().__init__("validation_failed", f"{key}: {'; '.join(errors)}", backend)


@dataclass(frozen=True)
class PartialWriteFailure:
    """Secondary leg of a dual write failed after the first leg succeeded.

    Reported, logged, and left for out-of-band reconciliation. Never raised.
    """

    entity: str
    key: str
    backend: str
    error_class: str
    message: str
