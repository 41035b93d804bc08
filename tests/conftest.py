"""
tests/conftest.py

Shared fixtures: in-memory backing stores, a manual clock and services wired
over them with every sleep turned into a no-op.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest

from app.config import FileStorageSettings, InventorySettings, LabelSettings
from app.connectors.base import FileHandle
from app.connectors.rate_limiter import QuotaRateLimiter
from app.connectors.retry import RetryPolicy
from app.domain.errors import NotFoundError, RetriableStoreError
from app.services.export_service import ExportService
from app.services.file_storage_service import FileStorageService
from app.services.inventory_backup_service import InventoryBackupService
from app.services.inventory_session_service import InventorySessionService
from app.services.label_archive_store import LabelArchiveStore
from app.services.label_service import LabelService
from app.services.spreadsheet_gateway import SpreadsheetGateway


def _no_sleep(_seconds: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ManualClock:
    """Settable UTC clock for services that stamp records."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryTabularStore:
    """
    Thread-safe sheet store. ``fail(operation, sheet, times, error)`` queues
    failures for the next matching calls.
    """

    def __init__(self) -> None:
        self.sheets: dict[str, list[list[str]]] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], list[Exception]] = {}
        self._lock = threading.Lock()

    def fail(self, operation: str, sheet: str, times: int = 1, error: Exception | None = None) -> None:
        queued = self._failures.setdefault((operation, sheet), [])
        queued.extend([error or RetriableStoreError("quota exceeded")] * times)

    def _check(self, operation: str, sheet: str) -> None:
        self.calls.append((operation, sheet))
        queued = self._failures.get((operation, sheet))
        if queued:
            raise queued.pop(0)

    def read_rows(self, sheet: str) -> list[list[str]]:
        with self._lock:
            self._check("read_rows", sheet)
            return copy.deepcopy(self.sheets.get(sheet, []))

    def append_row(self, sheet: str, values: Sequence[str]) -> None:
        with self._lock:
            self._check("append_row", sheet)
            self.sheets.setdefault(sheet, [[]]).append(list(values))

    def update_row(self, sheet: str, row_number: int, values: Sequence[str]) -> None:
        with self._lock:
            self._check("update_row", sheet)
            rows = self.sheets.get(sheet, [])
            if row_number > len(rows):
                raise NotFoundError(f"Row {row_number} does not exist in {sheet}.")
            rows[row_number - 1] = list(values)

    def clear_sheet(self, sheet: str) -> None:
        with self._lock:
            self._check("clear_sheet", sheet)
            rows = self.sheets.get(sheet, [])
            self.sheets[sheet] = rows[:1]

    def ensure_sheet(self, sheet: str, headers: Sequence[str]) -> None:
        with self._lock:
            self._check("ensure_sheet", sheet)
            rows = self.sheets.setdefault(sheet, [])
            if not rows:
                rows.append(list(headers))
            elif not any(rows[0]):
                rows[0] = list(headers)

    def data_rows(self, sheet: str) -> list[list[str]]:
        """Non-blank rows below the header."""
        return [row for row in self.sheets.get(sheet, [])[1:] if any(cell.strip() for cell in row)]


class InMemoryFileStore:
    """Folder/file store with injectable upload and delete failures."""

    def __init__(self) -> None:
        self.folders: dict[str, str] = {}
        self.files: dict[str, dict] = {}
        self.fail_uploads = False
        self.fail_deletes: set[str] = set()

    def ensure_folder(self, name: str) -> str:
        return self.folders.setdefault(name, f"folder-{len(self.folders) + 1}")

    def upload_file(self, folder_id: str, filename: str, content: bytes, mime_type: str) -> FileHandle:
        if self.fail_uploads:
            raise RetriableStoreError("upload quota exceeded")
        file_id = f"file-{uuid.uuid4().hex[:12]}"
        self.files[file_id] = {
            "folder_id": folder_id,
            "name": filename,
            "content": bytes(content),
            "mime_type": mime_type,
        }
        return FileHandle(file_id=file_id, name=filename, size=len(content))

    def list_files(self, folder_id: str) -> list[FileHandle]:
        return [
            FileHandle(file_id=file_id, name=entry["name"], size=len(entry["content"]))
            for file_id, entry in self.files.items()
            if entry["folder_id"] == folder_id
        ]

    def download_file(self, file_id: str) -> bytes:
        if file_id not in self.files:
            raise NotFoundError(f"File {file_id} not found.")
        return self.files[file_id]["content"]

    def delete_file(self, file_id: str) -> None:
        if file_id in self.fail_deletes:
            raise RetriableStoreError("delete failed")
        if file_id not in self.files:
            raise NotFoundError(f"File {file_id} not found.")
        del self.files[file_id]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(datetime(2025, 8, 5, 15, 30, tzinfo=timezone.utc))


@pytest.fixture()
def tabular_store() -> InMemoryTabularStore:
    return InMemoryTabularStore()


@pytest.fixture()
def file_store() -> InMemoryFileStore:
    return InMemoryFileStore()


@pytest.fixture()
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=2, backoff_initial_seconds=0.0, backoff_max_seconds=0.0)


@pytest.fixture()
def limiter() -> QuotaRateLimiter:
    return QuotaRateLimiter(min_interval_seconds=0.0, max_requests_per_minute=100_000, sleep=_no_sleep)


@pytest.fixture()
def gateway(
    tabular_store: InMemoryTabularStore,
    limiter: QuotaRateLimiter,
    retry_policy: RetryPolicy,
) -> SpreadsheetGateway:
    return SpreadsheetGateway(tabular_store, limiter=limiter, retry_policy=retry_policy, sleep=_no_sleep)


@pytest.fixture()
def session_service(gateway: SpreadsheetGateway, clock: ManualClock) -> InventorySessionService:
    return InventorySessionService(
        gateway,
        settings=InventorySettings(verify_base_delay_seconds=0.0),
        clock=clock,
        sleep=_no_sleep,
    )


@pytest.fixture()
def storage_service(
    gateway: SpreadsheetGateway,
    file_store: InMemoryFileStore,
    retry_policy: RetryPolicy,
    clock: ManualClock,
) -> FileStorageService:
    return FileStorageService(
        gateway,
        file_store,
        settings=FileStorageSettings(),
        retry_policy=retry_policy,
        clock=clock,
        sleep=_no_sleep,
    )


@pytest.fixture()
def backup_service(
    session_service: InventorySessionService,
    storage_service: FileStorageService,
) -> InventoryBackupService:
    return InventoryBackupService(session_service, storage_service, ExportService())


@pytest.fixture()
def label_service(tmp_path, clock: ManualClock) -> LabelService:
    settings = LabelSettings(archive_dir=str(tmp_path / "archives"))
    return LabelService(LabelArchiveStore(settings.archive_dir), settings=settings, clock=clock)
