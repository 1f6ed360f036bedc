"""Bounded exponential backoff for adapter calls."""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from huntstore.models.config import RetryConfig
from huntstore.models.errors import StoreUnavailableError, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_retry(backend: str, operation: str, correlation_id: Optional[str]) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            f"{backend} {operation} transient failure (attempt {state.attempt_number}), "
            f"retrying in {wait:.2f}s: {error}",
            extra={"correlation_id": correlation_id},
        )

    return before_sleep


def call_with_retry(
    fn: Callable[[], T],
    *,
    config: RetryConfig,
    backend: str,
    operation: str,
    correlation_id: Optional[str] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Run *fn*, retrying ``TransientStoreError`` with bounded backoff.

    Any other exception (including version conflicts) propagates on the
    first occurrence.

    Args:
        fn: Zero-argument callable performing one backend call.
        config: Backoff parameters.
        backend: Backend name for logs and errors.
        operation: Operation name for logs.
        correlation_id: Passed through to log records.
        sleep: Override the sleep function (tests).

    Returns:
        Whatever *fn* returns.

    Raises:
        StoreUnavailableError: Still transient after ``config.max_retries`` retries.
    """
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    retrying = Retrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=wait_exponential(multiplier=config.base_delay, max=config.max_delay),
        retry=retry_if_exception_type(TransientStoreError),
        before_sleep=_log_retry(backend, operation, correlation_id),
        reraise=True,
        **kwargs,
    )
    try:
        return retrying(fn)
    except TransientStoreError as e:
        logger.error(
            f"{backend} {operation} unavailable after {config.max_retries + 1} attempts: {e}",
            extra={"correlation_id": correlation_id},
        )
        raise StoreUnavailableError(f"{operation} failed: {e.message}", backend=backend) from e
