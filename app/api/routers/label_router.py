"""
app/api/routers/label_router.py

QR label endpoints: generate a label archive from a car data upload, serve
it, and accept scans of generated labels.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Form, Response, UploadFile

from app.api.dependencies import get_csv_upload, to_http_exception
from app.domain.errors import InventoryError
from app.schemas.inventory import ScanRecordResponse, ScanResponse
from app.schemas.labels import ArchivePurgeResponse, LabelBatchResponse, LabelScanRequest
from app.services.inventory_room_service import InventoryRoomManager, get_inventory_room_manager
from app.services.inventory_session_service import InventorySessionService, get_inventory_session_service
from app.services.label_service import LabelService, decode_label, get_label_service

router = APIRouter(prefix="/labels", tags=["labels"])


@router.post("/upload", response_model=LabelBatchResponse)
def upload_car_data(
    file: UploadFile = Depends(get_csv_upload),
    location: str = Form(...),
    user: str = Form(...),
    user_name: str = Form(..., alias="userName"),
    label_service: LabelService = Depends(get_label_service),
) -> LabelBatchResponse:
    """
    Generate one label per CSV row and keep the archive for download.
    """

    try:
        content = file.file.read()
        batch = label_service.create_label_archive(content, location=location, user=user, user_name=user_name)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    finally:
        file.file.close()

    return LabelBatchResponse(
        session_id=batch.session_id,
        location=batch.location,
        labels_generated=len(batch.images),
        archive_filename=batch.archive_filename,
        archive_url=f"/labels/archives/{batch.session_id}",
    )


@router.get("/archives/{session_id}")
def download_archive(
    session_id: str,
    label_service: LabelService = Depends(get_label_service),
) -> Response:
    try:
        content = label_service.get_archive(session_id)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{session_id}.zip"'},
    )


@router.post("/scan", response_model=ScanResponse)
def scan_label(
    request: LabelScanRequest,
    session_service: InventorySessionService = Depends(get_inventory_session_service),
    rooms: InventoryRoomManager = Depends(get_inventory_room_manager),
) -> ScanResponse:
    """
    Decode a scanned label and record it as a scan of its location.
    """

    try:
        label = decode_label(request.payload)
        result = session_service.save_label_scan(
            label,
            user=request.user,
            user_name=request.user_name,
            month=request.month,
            year=request.year,
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc

    rooms.notify_scan_added(
        result.summary.key,
        user=request.user,
        user_name=request.user_name,
        identifier=result.scan.identifier,
    )

    return ScanResponse(
        total_scans=result.summary.total_scans,
        status=result.summary.status.value,
        session_id=result.summary.session_id,
        scan=ScanRecordResponse.from_record(result.scan),
    )


@router.post("/archives/purge", response_model=ArchivePurgeResponse)
def purge_archives(
    label_service: LabelService = Depends(get_label_service),
) -> ArchivePurgeResponse:
    return ArchivePurgeResponse(removed=label_service.purge_archives())
