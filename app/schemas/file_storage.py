"""
app/schemas/file_storage.py

Response schemas for backup storage endpoints.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.domain.file_storage import StoredFileRecord


class StoredFileResponse(BaseModel):
    """
    API response model for one tracked backup file.
    """

    file_id: str
    filename: str
    location: str
    month: int
    year: int
    file_type: str
    size: int = Field(..., ge=0)
    uploaded_at: datetime
    expires_at: datetime
    download_count: int = Field(..., ge=0)
    status: str

    @classmethod
    def from_record(cls, record: StoredFileRecord) -> StoredFileResponse:
        return cls(
            file_id=record.file_id,
            filename=record.filename,
            location=record.location,
            month=record.month,
            year=record.year,
            file_type=record.file_type.value,
            size=record.size,
            uploaded_at=record.uploaded_at,
            expires_at=record.expires_at,
            download_count=record.download_count,
            status=record.status.value,
        )


class BackupResponse(BaseModel):
    file: StoredFileResponse
    session_id: str
    cleared_rows: int = Field(..., ge=0)
    reused_existing: bool = False


class SweepFailureResponse(BaseModel):
    file_id: str
    filename: str
    message: str


class SweepResponse(BaseModel):
    deleted_count: int = Field(..., ge=0)
    errors: list[SweepFailureResponse] = Field(default_factory=list)


class StorageStatsResponse(BaseModel):
    total_files: int = Field(..., ge=0)
    active_files: int = Field(..., ge=0)
    expired_files: int = Field(..., ge=0)
    total_size: int = Field(..., ge=0)
    by_location: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    by_month: dict[str, int] = Field(default_factory=dict)
