"""
app/schemas/inventory.py

Request and response schemas for inventory session endpoints.

Request fields are loosely typed on purpose: shape checks happen in
``app.validators.inventory_validator`` so every problem is reported in one
structured 400 response.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from app.domain.inventory import CarDataRow, MonthlySummaryRecord, ScanRecord
from app.schemas.file_storage import BackupResponse


class CarDataPayload(BaseModel):
    serie: str | None = None
    marca: str | None = None
    color: str | None = None
    ubicacion: str | None = None

    @classmethod
    def from_row(cls, row: CarDataRow) -> CarDataPayload:
        return cls(serie=row.serie, marca=row.marca, color=row.color, ubicacion=row.ubicacion)


class ScanRequest(BaseModel):
    """
    One scan submitted from a handheld scanner or the web UI.
    """

    model_config = {"populate_by_name": True}

    location: str | None = None
    month: str | int | None = None
    year: str | int | None = None
    identifier: str | None = None
    user: str | None = None
    user_name: str | None = Field(default=None, alias="userName")
    car_data: CarDataPayload | None = Field(default=None, alias="carData")


class FinishRequest(BaseModel):
    location: str
    month: str | int
    year: str | int
    user: str
    file_type: str = Field(default="xlsx", description="Backup file type: csv or xlsx")


class DeleteScansRequest(BaseModel):
    model_config = {"populate_by_name": True}

    location: str
    month: str | int
    year: str | int
    identifiers: list[str] = Field(..., min_length=1)
    user: str | None = None
    user_name: str | None = Field(default=None, alias="userName")


class SummaryResponse(BaseModel):
    location: str
    month: int
    year: int
    status: str
    created_at: datetime
    created_by: str
    user_name: str
    total_scans: int = Field(..., ge=0)
    session_id: str
    completed_at: datetime | None = None
    completed_by: str | None = None

    @classmethod
    def from_record(cls, record: MonthlySummaryRecord) -> SummaryResponse:
        return cls(
            location=record.location,
            month=record.month,
            year=record.year,
            status=record.status.value,
            created_at=record.created_at,
            created_by=record.created_by,
            user_name=record.user_name,
            total_scans=record.total_scans,
            session_id=record.session_id,
            completed_at=record.completed_at,
            completed_by=record.completed_by,
        )


class ScanRecordResponse(BaseModel):
    scanned_on: date
    identifier: str
    scanned_by: str
    session_id: str
    car_data: CarDataPayload | None = None

    @classmethod
    def from_record(cls, record: ScanRecord) -> ScanRecordResponse:
        return cls(
            scanned_on=record.scanned_on,
            identifier=record.identifier,
            scanned_by=record.scanned_by,
            session_id=record.session_id,
            car_data=CarDataPayload.from_row(record.car_data) if record.car_data else None,
        )


class ScanResponse(BaseModel):
    total_scans: int = Field(..., ge=0)
    status: str
    session_id: str
    scan: ScanRecordResponse


class FinishResponse(BaseModel):
    """
    Final summary plus the outcome of the backup step that follows finishing.
    """

    summary: SummaryResponse
    already_completed: bool = False
    backup: BackupResponse | None = None
    backup_error: str | None = None


class MonthlyInventoryResponse(BaseModel):
    location: str
    month: int
    year: int
    status: str
    sessions_this_month: int = Field(..., ge=0)
    summary: SummaryResponse | None = None
    scans: list[ScanRecordResponse] = Field(default_factory=list)


class InventoryStatusResponse(BaseModel):
    location: str
    month: int
    year: int
    exists: bool
    status: str
    session_id: str | None = None
    total_scans: int = Field(default=0, ge=0)
    sessions_this_month: int = Field(default=0, ge=0)


class InventoryLimitsResponse(BaseModel):
    can_start: bool
    current_month_count: int = Field(..., ge=0)
    active_count: int = Field(..., ge=0)
    reason: str | None = None
    active_session_id: str | None = None


class ScanCountResponse(BaseModel):
    location: str
    month: int
    year: int
    count: int = Field(..., ge=0)


class DuplicatesResponse(BaseModel):
    duplicates: dict[str, int] = Field(default_factory=dict)
    identifier: str | None = None
    identifier_scanned: bool | None = None


class DeleteScansResponse(BaseModel):
    deleted: int = Field(..., ge=0)


class LocationsResponse(BaseModel):
    locations: list[str]


class DuplicateCleanupResponse(BaseModel):
    groups_found: int = Field(..., ge=0)
    rows_removed: int = Field(..., ge=0)
    scans_reassigned: int = Field(..., ge=0)
    kept_session_ids: list[str] = Field(default_factory=list)


class SummaryStructureResponse(BaseModel):
    is_valid: bool
    total_rows: int = Field(..., ge=0)
    valid_rows: int = Field(..., ge=0)
    malformed_rows: list[int] = Field(default_factory=list)
    duplicate_active_keys: list[str] = Field(default_factory=list)
