"""
app/api/routers/inventory_router.py

Inventory session HTTP endpoints: scans, finishing, monthly data and
maintenance of the summary sheet.

Fixed-prefix routes (``/locations``, ``/maintenance``) are declared before the
``/{location}/{month}/{year}`` routes so they are never captured as a period.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import parse_file_type, to_http_exception
from app.domain.errors import ConflictError, InventoryError
from app.schemas.file_storage import BackupResponse, StoredFileResponse
from app.schemas.inventory import (
    DeleteScansRequest,
    DeleteScansResponse,
    DuplicateCleanupResponse,
    DuplicatesResponse,
    FinishRequest,
    FinishResponse,
    InventoryLimitsResponse,
    InventoryStatusResponse,
    LocationsResponse,
    MonthlyInventoryResponse,
    ScanCountResponse,
    ScanRecordResponse,
    ScanRequest,
    ScanResponse,
    SummaryResponse,
    SummaryStructureResponse,
)
from app.services.inventory_backup_service import InventoryBackupService, get_inventory_backup_service
from app.services.inventory_room_service import InventoryRoomManager, get_inventory_room_manager
from app.services.inventory_session_service import (
    DuplicateCleanupResult,
    InventorySessionService,
    get_inventory_session_service,
)
from app.validators.inventory_validator import validate_scan_input

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _cleanup_response(result: DuplicateCleanupResult) -> DuplicateCleanupResponse:
    return DuplicateCleanupResponse(
        groups_found=result.groups_found,
        rows_removed=result.rows_removed,
        scans_reassigned=result.scans_reassigned,
        kept_session_ids=result.kept_session_ids,
    )


# ---------------------------------------------------------------------------
# Scans and session completion
# ---------------------------------------------------------------------------


@router.post("/scans", response_model=ScanResponse)
def submit_scan(
    request: ScanRequest,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
    rooms: InventoryRoomManager = Depends(get_inventory_room_manager),
) -> ScanResponse:
    """
    Record one scanned identifier against the period's active session.
    """

    try:
        scan_input = validate_scan_input(
            location=request.location,
            identifier=request.identifier,
            user=request.user,
            user_name=request.user_name,
            month=request.month,
            year=request.year,
            car_data=request.car_data.model_dump() if request.car_data else None,
        )
        result = session_service.save_scan(scan_input)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc

    rooms.notify_scan_added(
        result.summary.key,
        user=scan_input.user,
        user_name=scan_input.user_name,
        identifier=result.scan.identifier,
    )

    return ScanResponse(
        total_scans=result.summary.total_scans,
        status=result.summary.status.value,
        session_id=result.summary.session_id,
        scan=ScanRecordResponse.from_record(result.scan),
    )


@router.post("/finish", response_model=FinishResponse)
def finish_inventory(
    request: FinishRequest,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
    backup_service: InventoryBackupService = Depends(get_inventory_backup_service),
    rooms: InventoryRoomManager = Depends(get_inventory_room_manager),
) -> FinishResponse:
    """
    Complete the active session, then back it up and clear its scans.

    A racing finisher gets the completed summary with ``already_completed``
    set. Members of the period's live room are told the session ended before
    the backup runs. A failed backup is reported without undoing the finish.
    """

    file_type = parse_file_type(request.file_type)
    try:
        summary = session_service.finish_session(request.location, request.month, request.year, request.user)
    except ConflictError as exc:
        if not exc.already_completed:
            raise to_http_exception(exc) from exc
        try:
            current = session_service.check_monthly_inventory(request.location, request.month, request.year)
        except InventoryError as lookup_exc:
            raise to_http_exception(lookup_exc) from lookup_exc
        if current.summary is None:
            raise to_http_exception(exc) from exc
        return FinishResponse(summary=SummaryResponse.from_record(current.summary), already_completed=True)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc

    rooms.notify_inventory_completed(summary.key, completed_by=request.user, session_id=summary.session_id)

    try:
        backup = backup_service.back_up_session(
            summary.location,
            summary.month,
            summary.year,
            file_type,
            session_id=summary.session_id,
        )
    except InventoryError as exc:
        logger.error(
            "Backup after finish failed session_id=%s error_type=%s error=%s",
            summary.session_id,
            type(exc).__name__,
            exc,
        )
        return FinishResponse(
            summary=SummaryResponse.from_record(summary),
            backup_error="The session was completed but its backup could not be stored yet; retry the backup.",
        )

    return FinishResponse(
        summary=SummaryResponse.from_record(summary),
        backup=BackupResponse(
            file=StoredFileResponse.from_record(backup.record),
            session_id=backup.session_id,
            cleared_rows=backup.cleared_rows,
            reused_existing=backup.reused_existing,
        ),
    )


@router.delete("/scans", response_model=DeleteScansResponse)
def delete_scans(
    request: DeleteScansRequest,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
    rooms: InventoryRoomManager = Depends(get_inventory_room_manager),
) -> DeleteScansResponse:
    """
    Remove mistaken scans from the active session.
    """

    try:
        deleted = session_service.delete_scanned_entries(
            request.location, request.month, request.year, request.identifiers
        )
        room = rooms.room_key(request.location, request.month, request.year)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc

    rooms.notify_scan_removed(
        room,
        identifiers=request.identifiers,
        user=request.user,
        user_name=request.user_name,
    )
    return DeleteScansResponse(deleted=deleted)


# ---------------------------------------------------------------------------
# Locations and maintenance
# ---------------------------------------------------------------------------


@router.get("/locations", response_model=LocationsResponse)
def list_locations(
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> LocationsResponse:
    return LocationsResponse(locations=list(session_service.locations))


@router.get("/locations/{location}/sessions", response_model=list[SummaryResponse])
def list_location_sessions(
    location: str,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> list[SummaryResponse]:
    try:
        rows = session_service.list_location_inventories(location)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return [SummaryResponse.from_record(row) for row in rows]


@router.post("/maintenance/cleanup-duplicates", response_model=DuplicateCleanupResponse)
def cleanup_duplicates(
    location: str | None = Query(default=None, description="Limit cleanup to one location"),
    month: str | None = Query(default=None),
    year: str | None = Query(default=None),
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> DuplicateCleanupResponse:
    """
    Remove duplicate summary rows, for every period or for one period.
    """

    try:
        if location is None:
            result = session_service.cleanup_duplicate_rows()
        else:
            result = session_service.cleanup_specific_duplicates(location, month, year)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return _cleanup_response(result)


@router.get("/maintenance/summary-structure", response_model=SummaryStructureResponse)
def summary_structure(
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> SummaryStructureResponse:
    try:
        report = session_service.validate_summary_structure()
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return SummaryStructureResponse(
        is_valid=report.is_valid,
        total_rows=report.total_rows,
        valid_rows=report.valid_rows,
        malformed_rows=report.malformed_rows,
        duplicate_active_keys=report.duplicate_active_keys,
    )


# ---------------------------------------------------------------------------
# Period queries
# ---------------------------------------------------------------------------


@router.get("/{location}/{month}/{year}", response_model=MonthlyInventoryResponse)
def get_monthly_inventory(
    location: str,
    month: str,
    year: str,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> MonthlyInventoryResponse:
    """
    Return the period's current summary and its scans.
    """

    try:
        inventory = session_service.get_monthly_inventory(location, month, year)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return MonthlyInventoryResponse(
        location=inventory.key.location,
        month=inventory.key.month,
        year=inventory.key.year,
        status=inventory.status.value,
        sessions_this_month=inventory.sessions_this_month,
        summary=SummaryResponse.from_record(inventory.summary) if inventory.summary else None,
        scans=[ScanRecordResponse.from_record(scan) for scan in inventory.scans],
    )


@router.get("/{location}/{month}/{year}/status", response_model=InventoryStatusResponse)
def get_inventory_status(
    location: str,
    month: str,
    year: str,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> InventoryStatusResponse:
    try:
        inventory = session_service.check_monthly_inventory(location, month, year)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    summary = inventory.summary
    return InventoryStatusResponse(
        location=inventory.key.location,
        month=inventory.key.month,
        year=inventory.key.year,
        exists=summary is not None,
        status=inventory.status.value,
        session_id=summary.session_id if summary else None,
        total_scans=summary.total_scans if summary else 0,
        sessions_this_month=inventory.sessions_this_month,
    )


@router.get("/{location}/{month}/{year}/limits", response_model=InventoryLimitsResponse)
def get_inventory_limits(
    location: str,
    month: str,
    year: str,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> InventoryLimitsResponse:
    try:
        limits = session_service.check_inventory_limits(location, month, year)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return InventoryLimitsResponse(
        can_start=limits.can_start,
        current_month_count=limits.current_month_count,
        active_count=limits.active_count,
        reason=limits.reason,
        active_session_id=limits.active_session_id,
    )


@router.get("/{location}/{month}/{year}/scan-count", response_model=ScanCountResponse)
def get_scan_count(
    location: str,
    month: str,
    year: str,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> ScanCountResponse:
    try:
        inventory = session_service.check_monthly_inventory(location, month, year)
        count = session_service.get_scan_count(location, month, year)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return ScanCountResponse(
        location=inventory.key.location,
        month=inventory.key.month,
        year=inventory.key.year,
        count=count,
    )


@router.get("/{location}/{month}/{year}/duplicates", response_model=DuplicatesResponse)
def get_duplicates(
    location: str,
    month: str,
    year: str,
    identifier: str | None = Query(default=None, description="Also report whether this identifier was scanned"),
    session_service: InventorySessionService = Depends(get_inventory_session_service),
) -> DuplicatesResponse:
    try:
        duplicates = session_service.get_duplicate_identifiers(location, month, year)
        scanned = (
            session_service.check_duplicate_identifier(location, month, year, identifier)
            if identifier
            else None
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return DuplicatesResponse(
        duplicates=duplicates,
        identifier=identifier.strip().upper() if identifier else None,
        identifier_scanned=scanned,
    )
