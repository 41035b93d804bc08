"""
app/domain/file_storage.py

Tracking records for inventory backups kept in the file store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Sequence

from app.domain.inventory import format_timestamp, month_from_name, month_name, parse_timestamp

STORAGE_HEADERS: tuple[str, ...] = (
    "File ID",
    "Filename",
    "Location",
    "Month",
    "Year",
    "Type",
    "Size",
    "Uploaded At",
    "Expires At",
    "Download Count",
    "Status",
)


class FileType(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"

    @property
    def media_type(self) -> str:
        if self is FileType.CSV:
            return "text/csv"
        return "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

    @classmethod
    def parse(cls, value: str) -> FileType:
        normalized = value.strip().lower()
        if normalized in {"excel", "xls"}:
            normalized = "xlsx"
        return cls(normalized)


class FileStatus(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"


@dataclass(frozen=True)
class StoredFileRecord:
    """
    Tracking row for one backup file.

    ``expires_at`` is fixed when the record is created; only the retention
    sweep moves ``status`` from Active to Expired.
    """

    file_id: str
    filename: str
    location: str
    month: int
    year: int
    file_type: FileType
    size: int
    uploaded_at: datetime
    expires_at: datetime
    download_count: int = 0
    status: FileStatus = FileStatus.ACTIVE
    row_number: int | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.status is FileStatus.ACTIVE and self.expires_at < now

    def with_download(self) -> StoredFileRecord:
        return replace(self, download_count=self.download_count + 1)

    def expired(self) -> StoredFileRecord:
        return replace(self, status=FileStatus.EXPIRED)

    def to_row(self) -> list[str]:
        return [
            self.file_id,
            self.filename,
            self.location,
            month_name(self.month),
            str(self.year),
            self.file_type.value,
            str(self.size),
            format_timestamp(self.uploaded_at),
            format_timestamp(self.expires_at),
            str(self.download_count),
            self.status.value,
        ]

    @classmethod
    def from_row(cls, values: Sequence[str], row_number: int | None = None) -> StoredFileRecord:
        cells = [str(value).strip() for value in values] + [""] * (len(STORAGE_HEADERS) - len(values))
        uploaded_at = parse_timestamp(cells[7])
        expires_at = parse_timestamp(cells[8])
        if not cells[0] or uploaded_at is None or expires_at is None:
            raise ValueError("Storage row is missing its file id or timestamps.")
        return cls(
            file_id=cells[0],
            filename=cells[1],
            location=cells[2],
            month=month_from_name(cells[3]),
            year=int(cells[4]),
            file_type=FileType.parse(cells[5]),
            size=int(cells[6] or 0),
            uploaded_at=uploaded_at,
            expires_at=expires_at,
            download_count=int(cells[9] or 0),
            status=FileStatus(cells[10] or FileStatus.ACTIVE.value),
            row_number=row_number,
        )


@dataclass(frozen=True)
class SweepFailure:
    file_id: str
    filename: str
    message: str


@dataclass(frozen=True)
class SweepResult:
    deleted_count: int = 0
    errors: list[SweepFailure] = field(default_factory=list)


@dataclass(frozen=True)
class StorageStatistics:
    total_files: int
    active_files: int
    expired_files: int
    total_size: int
    by_location: dict[str, int]
    by_type: dict[str, int]
    by_month: dict[str, int]
