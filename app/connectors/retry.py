"""
app/connectors/retry.py

Exponential backoff for transient backing-store failures.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from app.domain.errors import RetriableStoreError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 10.0

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_initial_seconds * (2**attempt), self.backoff_max_seconds)


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation`` and retry RetriableStoreError with exponential backoff.

    Other exceptions propagate untouched. Once retries are exhausted the last
    error is re-raised as StoreUnavailableError.
    """

    last_error: RetriableStoreError | None = None
    for attempt in range(policy.max_retries + 1):
        try:
            return operation()
        except RetriableStoreError as exc:
            last_error = exc

        if attempt >= policy.max_retries:
            break

        backoff_seconds = policy.delay_for(attempt)
        logger.warning(
            "Store request retry op=%s attempt=%s/%s wait_seconds=%.2f error=%s",
            description,
            attempt + 1,
            policy.max_retries,
            backoff_seconds,
            last_error,
        )
        sleep(backoff_seconds)

    logger.error("Store request exhausted retries op=%s error=%s", description, last_error)
    raise StoreUnavailableError(f"{description}: backing store unavailable after retries.") from last_error
