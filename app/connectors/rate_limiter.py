"""
app/connectors/rate_limiter.py

Quota-aware request limiter shared by every backing-store call in a process.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

_WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class LimiterSnapshot:
    requests_last_minute: int
    max_requests_per_minute: int
    degraded: bool


class QuotaRateLimiter:
    """
    Enforces a minimum spacing between calls and a per-minute ceiling.

    Once usage in the trailing minute reaches ``degraded_threshold`` of the
    ceiling the limiter switches to degraded mode: a longer spacing and a
    lower ceiling. Callers over budget wait; they are never rejected.
    """

    def __init__(
        self,
        *,
        min_interval_seconds: float = 0.5,
        max_requests_per_minute: int = 30,
        degraded_threshold: float = 0.8,
        degraded_min_interval_seconds: float = 1.0,
        degraded_max_requests_per_minute: int = 20,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._min_interval_seconds = max(0.0, min_interval_seconds)
        self._max_requests_per_minute = max(1, max_requests_per_minute)
        self._degraded_threshold = degraded_threshold
        self._degraded_min_interval_seconds = max(self._min_interval_seconds, degraded_min_interval_seconds)
        self._degraded_max_requests_per_minute = max(
            1, min(degraded_max_requests_per_minute, self._max_requests_per_minute)
        )
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._last_request: float | None = None
        self._degraded = False
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """
        Block until one more request fits the current budget, then record it.
        """

        with self._lock:
            now = self._clock()
            self._prune(now)
            self._update_mode()

            ceiling, interval = self._budget()
            if len(self._timestamps) >= ceiling:
                wait_seconds = _WINDOW_SECONDS - (now - self._timestamps[len(self._timestamps) - ceiling])
                if wait_seconds > 0:
                    logger.warning(
                        "Rate limiter ceiling reached requests=%s ceiling=%s degraded=%s wait_seconds=%.2f",
                        len(self._timestamps),
                        ceiling,
                        self._degraded,
                        wait_seconds,
                    )
                    self._sleep(wait_seconds)
                    now = self._clock()
                    self._prune(now)

            if self._last_request is not None:
                remaining = interval - (now - self._last_request)
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()

            self._last_request = now
            self._timestamps.append(now)

    def snapshot(self) -> LimiterSnapshot:
        with self._lock:
            self._prune(self._clock())
            return LimiterSnapshot(
                requests_last_minute=len(self._timestamps),
                max_requests_per_minute=self._max_requests_per_minute,
                degraded=self._degraded,
            )

    def _budget(self) -> tuple[int, float]:
        if self._degraded:
            return self._degraded_max_requests_per_minute, self._degraded_min_interval_seconds
        return self._max_requests_per_minute, self._min_interval_seconds

    def _update_mode(self) -> None:
        usage = len(self._timestamps) / self._max_requests_per_minute
        if not self._degraded and usage >= self._degraded_threshold:
            self._degraded = True
            logger.warning("Rate limiter entering degraded mode usage=%.2f", usage)
        elif self._degraded and len(self._timestamps) < self._degraded_max_requests_per_minute // 2:
            self._degraded = False
            logger.info("Rate limiter leaving degraded mode usage=%.2f", usage)

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= _WINDOW_SECONDS:
            self._timestamps.popleft()
