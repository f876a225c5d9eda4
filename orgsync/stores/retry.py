"""Bounded retry for transient store failures."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from ..error_taxonomy import StoreError, StoreErrorKind, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _write_is_retryable(exception: BaseException) -> bool:
    # A timed-out write may already have committed.
    if isinstance(exception, StoreError) and exception.store_kind is StoreErrorKind.TIMEOUT:
        return False
    return is_retryable(exception)


def build_retryer(max_attempts: int, *, for_write: bool = False) -> Retrying:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    return Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=5),
        retry=retry_if_exception(_write_is_retryable if for_write else is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def call_with_retry(func: Callable[[], T], max_attempts: int, *, for_write: bool = False) -> T:
    """Run ``func`` under a bounded exponential backoff; the last error is re-raised."""
    retryer = build_retryer(max_attempts, for_write=for_write)
    return retryer(func)
