"""
app/services/spreadsheet_gateway.py

Rate-limited, cached, retrying access to the tabular backing store.

Every call passes through the process-wide ``QuotaRateLimiter`` and the
shared retry policy. Reads are cached per sheet for a short window; every
write to a sheet drops that sheet's cache entry before returning.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Sequence, TypeVar

from app.config import (
    get_rate_limit_settings,
    get_spreadsheet_settings,
)
from app.connectors.base import TabularStore
from app.connectors.rate_limiter import QuotaRateLimiter
from app.connectors.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SheetRow:
    """
    A non-blank data row and its 1-based position in the sheet.
    """

    row_number: int
    values: tuple[str, ...]


def _is_blank_row(values: Sequence[str]) -> bool:
    return all(not str(value).strip() for value in values)


class SpreadsheetGateway:
    """
    Sheet access used by every service that persists tabular records.
    """

    def __init__(
        self,
        store: TabularStore,
        *,
        limiter: QuotaRateLimiter,
        retry_policy: RetryPolicy,
        cache_ttl_seconds: float = 120.0,
        cache_max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._limiter = limiter
        self._retry_policy = retry_policy
        self._cache_ttl_seconds = cache_ttl_seconds
        self._cache_max_entries = cache_max_entries
        self._clock = clock
        self._sleep = sleep
        self._cache: OrderedDict[str, tuple[float, list[SheetRow]]] = OrderedDict()
        self._ensured: set[str] = set()
        self._lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def read_rows(self, sheet: str, *, fresh: bool = False) -> list[SheetRow]:
        """
        Return the sheet's non-blank data rows (header excluded).

        ``fresh=True`` bypasses the cache, for read-after-write checks.
        """

        if not fresh and self._cache_ttl_seconds > 0:
            cached = self._cached(sheet)
            if cached is not None:
                return cached

        raw_rows = self._call(f"read_rows:{sheet}", lambda: self._store.read_rows(sheet))
        rows = [
            SheetRow(row_number=index, values=tuple(str(value) for value in values))
            for index, values in enumerate(raw_rows, start=1)
            if index > 1 and not _is_blank_row(values)
        ]
        self._remember(sheet, rows)
        return list(rows)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def append_row(self, sheet: str, values: Sequence[str]) -> None:
        cells = [str(value) for value in values]
        self._write(sheet, "append_row", lambda: self._store.append_row(sheet, cells))

    def update_row(self, sheet: str, row_number: int, values: Sequence[str]) -> None:
        if row_number < 2:
            raise ValueError("Data rows start at row 2; the header row is not writable.")
        cells = [str(value) for value in values]
        self._write(sheet, "update_row", lambda: self._store.update_row(sheet, row_number, cells))

    def blank_row(self, sheet: str, row_number: int, width: int) -> None:
        self.update_row(sheet, row_number, [""] * width)

    def clear_sheet(self, sheet: str) -> None:
        self._write(sheet, "clear_sheet", lambda: self._store.clear_sheet(sheet))

    def ensure_sheet(self, sheet: str, headers: Sequence[str]) -> None:
        with self._lock:
            if sheet in self._ensured:
                return
        self._write(sheet, "ensure_sheet", lambda: self._store.ensure_sheet(sheet, list(headers)))
        with self._lock:
            self._ensured.add(sheet)

    def invalidate(self, sheet: str | None = None) -> None:
        with self._lock:
            if sheet is None:
                self._cache.clear()
            else:
                self._cache.pop(sheet, None)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _write(self, sheet: str, operation: str, action: Callable[[], None]) -> None:
        try:
            self._call(f"{operation}:{sheet}", action)
        finally:
            self.invalidate(sheet)

    def _call(self, description: str, action: Callable[[], T]) -> T:
        def attempt() -> T:
            self._limiter.acquire()
            return action()

        return call_with_retry(
            attempt,
            policy=self._retry_policy,
            description=description,
            sleep=self._sleep,
        )

    def _cached(self, sheet: str) -> list[SheetRow] | None:
        with self._lock:
            entry = self._cache.get(sheet)
            if entry is None:
                return None
            expires_at, rows = entry
            if expires_at <= self._clock():
                self._cache.pop(sheet, None)
                return None
            self._cache.move_to_end(sheet)
            return list(rows)

    def _remember(self, sheet: str, rows: list[SheetRow]) -> None:
        if self._cache_ttl_seconds <= 0:
            return
        with self._lock:
            self._cache[sheet] = (self._clock() + self._cache_ttl_seconds, list(rows))
            self._cache.move_to_end(sheet)
            while len(self._cache) > self._cache_max_entries:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug("Sheet cache evicted sheet=%s", evicted)


# ---------------------------------------------------------------------------
# Process-wide instances
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_rate_limiter() -> QuotaRateLimiter:
    """
    Return the single limiter shared by every backing-store caller.
    """

    settings = get_rate_limit_settings()
    return QuotaRateLimiter(
        min_interval_seconds=settings.min_interval_seconds,
        max_requests_per_minute=settings.max_requests_per_minute,
        degraded_threshold=settings.degraded_threshold,
        degraded_min_interval_seconds=settings.degraded_min_interval_seconds,
        degraded_max_requests_per_minute=settings.degraded_max_requests_per_minute,
    )


def build_tabular_store() -> TabularStore:
    settings = get_spreadsheet_settings()
    if settings.backend == "google_sheets":
        from app.connectors.google_sheets_store import GoogleSheetsStore

        return GoogleSheetsStore(settings=settings)

    from app.connectors.database_sheet_store import DatabaseSheetStore
    from db.session import SessionLocal

    return DatabaseSheetStore(SessionLocal)


def build_retry_policy() -> RetryPolicy:
    settings = get_spreadsheet_settings()
    return RetryPolicy(
        max_retries=settings.max_retries,
        backoff_initial_seconds=settings.backoff_initial_seconds,
        backoff_max_seconds=settings.backoff_max_seconds,
    )


@lru_cache(maxsize=1)
def get_spreadsheet_gateway() -> SpreadsheetGateway:
    """
    Return the process-wide gateway over the configured tabular backend.
    """

    settings = get_spreadsheet_settings()
    return SpreadsheetGateway(
        build_tabular_store(),
        limiter=get_rate_limiter(),
        retry_policy=build_retry_policy(),
        cache_ttl_seconds=settings.cache_ttl_seconds,
        cache_max_entries=settings.cache_max_entries,
    )
