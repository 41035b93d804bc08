"""
app/api/routers/file_storage_router.py

Stored backup endpoints: listing, download, on-demand backup, exports and
the retention sweep.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from app.api.dependencies import parse_file_type, to_http_exception
from app.domain.errors import InventoryError, NotFoundError
from app.schemas.file_storage import (
    BackupResponse,
    StorageStatsResponse,
    StoredFileResponse,
    SweepFailureResponse,
    SweepResponse,
)
from app.services.file_storage_service import DownloadedFile, FileStorageService, get_file_storage_service
from app.services.inventory_backup_service import InventoryBackupService, get_inventory_backup_service

router = APIRouter(prefix="/storage", tags=["storage"])


def _attachment(downloaded: DownloadedFile) -> Response:
    record = downloaded.record
    return Response(
        content=downloaded.content,
        media_type=record.file_type.media_type,
        headers={"Content-Disposition": f'attachment; filename="{record.filename}"'},
    )


@router.get("/files/{location}", response_model=list[StoredFileResponse])
def list_files(
    location: str,
    month: str | None = Query(default=None),
    year: str | None = Query(default=None),
    storage_service: FileStorageService = Depends(get_file_storage_service),
) -> list[StoredFileResponse]:
    """
    Tracked backups for a location, newest first.
    """

    try:
        records = storage_service.list_files(location, month=month, year=year)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return [StoredFileResponse.from_record(record) for record in records]


@router.get("/files/{location}/{file_id:path}")
def download_file(
    location: str,
    file_id: str,
    storage_service: FileStorageService = Depends(get_file_storage_service),
) -> Response:
    try:
        record = storage_service.get_file_record(file_id)
        if record.location.lower() != location.strip().lower():
            raise NotFoundError(f"Stored file {file_id} not found for {location}.")
        downloaded = storage_service.download_file(file_id)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return _attachment(downloaded)


@router.post("/backups/{location}/{month}/{year}", response_model=BackupResponse)
def create_backup(
    location: str,
    month: str,
    year: str,
    file_type: str = Query(default="xlsx", description="csv or xlsx"),
    session_id: str | None = Query(default=None, description="Completed session to back up"),
    backup_service: InventoryBackupService = Depends(get_inventory_backup_service),
) -> BackupResponse:
    """
    Back up a completed session and clear its scans.
    """

    parsed_type = parse_file_type(file_type)
    try:
        result = backup_service.back_up_session(location, month, year, parsed_type, session_id=session_id)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return BackupResponse(
        file=StoredFileResponse.from_record(result.record),
        session_id=result.session_id,
        cleared_rows=result.cleared_rows,
        reused_existing=result.reused_existing,
    )


@router.get("/exports/{location}/{month}/{year}")
def download_inventory(
    location: str,
    month: str,
    year: str,
    file_type: str = Query(default="xlsx", description="csv or xlsx"),
    backup_service: InventoryBackupService = Depends(get_inventory_backup_service),
) -> Response:
    """
    Serve the stored backup for the period, regenerating it when none exists.
    """

    parsed_type = parse_file_type(file_type)
    try:
        downloaded = backup_service.download_inventory(location, month, year, parsed_type)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return _attachment(downloaded)


@router.get("/stats", response_model=StorageStatsResponse)
def storage_stats(
    storage_service: FileStorageService = Depends(get_file_storage_service),
) -> StorageStatsResponse:
    try:
        stats = storage_service.get_statistics()
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return StorageStatsResponse(
        total_files=stats.total_files,
        active_files=stats.active_files,
        expired_files=stats.expired_files,
        total_size=stats.total_size,
        by_location=stats.by_location,
        by_type=stats.by_type,
        by_month=stats.by_month,
    )


@router.post("/sweep", response_model=SweepResponse)
def run_retention_sweep(
    storage_service: FileStorageService = Depends(get_file_storage_service),
) -> SweepResponse:
    """
    Run the retention sweep now instead of waiting for the daily job.
    """

    try:
        result = storage_service.sweep_expired()
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return SweepResponse(
        deleted_count=result.deleted_count,
        errors=[
            SweepFailureResponse(file_id=failure.file_id, filename=failure.filename, message=failure.message)
            for failure in result.errors
        ],
    )
