"""
app/services/file_storage_service.py

Backup files in the file store, their tracking sheet and the retention sweep.

Each stored file gets one tracking row whose ``expires_at`` is fixed at
upload time. The sweep deletes the file first and only then marks the row
Expired, so a failed delete leaves the row Active for the next run.
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable, TypeVar

from app.config import FileStorageSettings, get_file_storage_settings
from app.connectors.base import FileStore
from app.connectors.retry import RetryPolicy, call_with_retry
from app.domain.errors import InventoryError, NotFoundError
from app.domain.file_storage import (
    STORAGE_HEADERS,
    FileStatus,
    FileType,
    StorageStatistics,
    StoredFileRecord,
    SweepFailure,
    SweepResult,
)
from app.domain.inventory import format_timestamp, month_name
from app.logging_utils import log_event
from app.services.spreadsheet_gateway import SpreadsheetGateway, build_retry_policy, get_spreadsheet_gateway
from app.validators.inventory_validator import parse_location, parse_month, parse_year

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def session_file_tag(session_id: str) -> str:
    """Short session marker used in backup filenames."""
    return _UNSAFE_FILENAME_CHARS.sub("_", session_id.replace("inv_", "")[:8])


@dataclass(frozen=True)
class DownloadedFile:
    record: StoredFileRecord
    content: bytes


class FileStorageService:
    """
    Owns StoredFileRecord and the retention sweep.
    """

    def __init__(
        self,
        gateway: SpreadsheetGateway,
        file_store: FileStore,
        *,
        settings: FileStorageSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._gateway = gateway
        self._file_store = file_store
        self._settings = settings or FileStorageSettings()
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep

    @property
    def retention_days(self) -> int:
        return self._settings.retention_days

    # -----------------------------------------------------------------------
    # Store / list / download
    # -----------------------------------------------------------------------

    def store_file(
        self,
        location: Any,
        month: Any,
        year: Any,
        file_type: FileType | str,
        content: bytes,
        *,
        session_id: str | None = None,
    ) -> StoredFileRecord:
        """
        Upload ``content`` into the location's folder and track it.

        If the tracking row cannot be written the uploaded file is removed
        again before the error propagates.
        """

        now = self._clock()
        location = parse_location(location)
        month = parse_month(month)
        year = parse_year(year, now=now)
        file_type = file_type if isinstance(file_type, FileType) else FileType.parse(file_type)

        filename = self._build_filename(location, month, year, file_type, now, session_id)
        folder_id = self._with_retry("ensure_folder", lambda: self._file_store.ensure_folder(location))
        handle = self._with_retry(
            "upload_file",
            lambda: self._file_store.upload_file(folder_id, filename, content, file_type.media_type),
        )

        record = StoredFileRecord(
            file_id=handle.file_id,
            filename=filename,
            location=location,
            month=month,
            year=year,
            file_type=file_type,
            size=len(content),
            uploaded_at=now,
            expires_at=now + timedelta(days=self._settings.retention_days),
        )
        try:
            self._ensure_tracking_sheet()
            self._gateway.append_row(self._settings.tracking_sheet_name, record.to_row())
        except InventoryError:
            logger.error("Tracking row write failed; removing uploaded file file_id=%s", handle.file_id)
            self._delete_stored_file_quietly(handle.file_id)
            raise

        log_event(
            logger,
            logging.INFO,
            "backup_stored",
            file_id=record.file_id,
            filename=record.filename,
            location=location,
            month=month,
            year=year,
            size=record.size,
            expires_at=format_timestamp(record.expires_at),
        )
        return record

    def list_files(
        self,
        location: Any,
        *,
        month: Any = None,
        year: Any = None,
    ) -> list[StoredFileRecord]:
        """
        Tracked files for a location, newest first.
        """

        name = parse_location(location).lower()
        records = [record for record in self._load_records() if record.location.lower() == name]
        if month is not None:
            wanted_month = parse_month(month)
            records = [record for record in records if record.month == wanted_month]
        if year is not None:
            wanted_year = parse_year(year, now=self._clock())
            records = [record for record in records if record.year == wanted_year]
        return sorted(records, key=lambda record: record.uploaded_at, reverse=True)

    def list_all_files(self) -> list[StoredFileRecord]:
        return sorted(self._load_records(), key=lambda record: record.uploaded_at, reverse=True)

    def find_backup(
        self,
        location: Any,
        month: Any,
        year: Any,
        file_type: FileType | str | None = None,
        *,
        session_id: str | None = None,
    ) -> StoredFileRecord | None:
        """
        Newest Active backup for the period.

        ``file_type`` and ``session_id`` narrow the match; the session is
        recognized by the tag embedded in the filename at upload time.
        """

        wanted_type = None
        if file_type is not None:
            wanted_type = file_type if isinstance(file_type, FileType) else FileType.parse(file_type)
        tag = f"_{session_file_tag(session_id)}_" if session_id else None
        for record in self.list_files(location, month=month, year=year):
            if record.status is not FileStatus.ACTIVE:
                continue
            if wanted_type is not None and record.file_type is not wanted_type:
                continue
            if tag is not None and tag not in record.filename:
                continue
            return record
        return None

    def get_file_record(self, file_id: str) -> StoredFileRecord:
        record = next((item for item in self._load_records(fresh=True) if item.file_id == file_id), None)
        if record is None:
            raise NotFoundError(f"Stored file {file_id} not found.")
        return record

    def download_file(self, file_id: str) -> DownloadedFile:
        """
        Fetch file content; the download counter is updated best-effort.
        """

        record = self.get_file_record(file_id)
        if record.status is FileStatus.EXPIRED:
            raise NotFoundError(f"Stored file {file_id} has expired and was deleted.")
        content = self._with_retry("download_file", lambda: self._file_store.download_file(file_id))
        return DownloadedFile(record=self._record_download(record), content=content)

    def _record_download(self, record: StoredFileRecord) -> StoredFileRecord:
        updated = record.with_download()
        try:
            self._gateway.update_row(self._settings.tracking_sheet_name, record.row_number, updated.to_row())
        except InventoryError as exc:
            logger.warning("Download counter update failed file_id=%s error=%s", record.file_id, exc)
            return record
        return updated

    # -----------------------------------------------------------------------
    # Retention
    # -----------------------------------------------------------------------

    def sweep_expired(self, now: datetime | None = None) -> SweepResult:
        """
        Delete files whose ``expires_at`` has passed and mark their rows Expired.

        Failures are logged and collected; the sweep continues with the rest.
        Folders are never deleted.
        """

        now = now or self._clock()
        deleted_count = 0
        errors: list[SweepFailure] = []
        for record in self._load_records(fresh=True):
            if not record.is_expired(now):
                continue

            try:
                self._with_retry("delete_file", lambda: self._file_store.delete_file(record.file_id))
            except NotFoundError:
                logger.info("Expired file already absent from store file_id=%s", record.file_id)
            except InventoryError as exc:
                logger.warning("Retention delete failed file_id=%s filename=%s error=%s", record.file_id, record.filename, exc)
                errors.append(SweepFailure(file_id=record.file_id, filename=record.filename, message=str(exc)))
                continue

            try:
                self._gateway.update_row(self._settings.tracking_sheet_name, record.row_number, record.expired().to_row())
            except InventoryError as exc:
                logger.warning("Retention status update failed file_id=%s error=%s", record.file_id, exc)
                errors.append(SweepFailure(file_id=record.file_id, filename=record.filename, message=str(exc)))
                continue
            deleted_count += 1

        log_event(
            logger,
            logging.INFO,
            "retention_sweep_completed",
            deleted=deleted_count,
            failed=len(errors),
            retention_days=self._settings.retention_days,
        )
        return SweepResult(deleted_count=deleted_count, errors=errors)

    def get_statistics(self) -> StorageStatistics:
        records = self._load_records()
        return StorageStatistics(
            total_files=len(records),
            active_files=sum(1 for record in records if record.status is FileStatus.ACTIVE),
            expired_files=sum(1 for record in records if record.status is FileStatus.EXPIRED),
            total_size=sum(record.size for record in records if record.status is FileStatus.ACTIVE),
            by_location=dict(Counter(record.location for record in records)),
            by_type=dict(Counter(record.file_type.value for record in records)),
            by_month=dict(Counter(f"{record.year}-{record.month:02d}" for record in records)),
        )

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _ensure_tracking_sheet(self) -> None:
        self._gateway.ensure_sheet(self._settings.tracking_sheet_name, STORAGE_HEADERS)

    def _load_records(self, *, fresh: bool = False) -> list[StoredFileRecord]:
        self._ensure_tracking_sheet()
        records: list[StoredFileRecord] = []
        for row in self._gateway.read_rows(self._settings.tracking_sheet_name, fresh=fresh):
            try:
                records.append(StoredFileRecord.from_row(row.values, row.row_number))
            except ValueError as exc:
                logger.warning("Skipping malformed storage row=%s error=%s", row.row_number, exc)
        return records

    def _with_retry(self, operation: str, action: Callable[[], T]) -> T:
        return call_with_retry(action, policy=self._retry_policy, description=f"file_store.{operation}", sleep=self._sleep)

    def _delete_stored_file_quietly(self, file_id: str) -> None:
        try:
            self._with_retry("delete_file", lambda: self._file_store.delete_file(file_id))
        except InventoryError as exc:
            logger.warning("Orphaned upload could not be removed file_id=%s error=%s", file_id, exc)

    @staticmethod
    def _build_filename(
        location: str,
        month: int,
        year: int,
        file_type: FileType,
        now: datetime,
        session_id: str | None,
    ) -> str:
        session_part = session_file_tag(session_id) if session_id else "manual"
        stamp = now.strftime("%Y%m%dT%H%M%SZ")
        raw = f"{location}_{month_name(month)}_{year}_{session_part}_{stamp}.{file_type.value}"
        return _UNSAFE_FILENAME_CHARS.sub("_", raw)


def build_file_store() -> FileStore:
    settings = get_file_storage_settings()
    if settings.backend == "google_drive":
        from app.connectors.google_drive_store import GoogleDriveStore

        return GoogleDriveStore(settings=settings)

    from app.connectors.local_file_store import LocalFileStore

    return LocalFileStore(settings.local_root)


@lru_cache(maxsize=1)
def get_file_storage_service() -> FileStorageService:
    """
    Build and cache the file storage service over the shared gateway.
    """

    return FileStorageService(
        get_spreadsheet_gateway(),
        build_file_store(),
        settings=get_file_storage_settings(),
        retry_policy=build_retry_policy(),
    )
