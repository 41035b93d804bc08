"""
app/api/dependencies.py

Shared FastAPI dependencies and the domain error to HTTP status mapping.
"""

from __future__ import annotations

import logging

from fastapi import File, HTTPException, UploadFile, status

from app.domain.errors import (
    ConflictError,
    InventoryError,
    NotFoundError,
    RetriableStoreError,
    StoreUnavailableError,
    ValidationError,
)
from app.domain.file_storage import FileType

logger = logging.getLogger(__name__)

CSV_CONTENT_TYPES = {
    "text/csv",
    "text/plain",
    "application/csv",
    "application/vnd.ms-excel",
}
CSV_EXTENSIONS = (".csv", ".txt", ".tsv")

TRY_AGAIN_DETAIL = "The inventory store is busy right now. Please try again in a moment."
INTERNAL_DETAIL = "The request could not be completed because of an internal error."


def get_csv_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is delimited text by extension or MIME type.
    """

    filename = (file.filename or "").strip().lower()
    content_type = (file.content_type or "").strip().lower()

    is_csv_filename = filename.endswith(CSV_EXTENSIONS)
    is_csv_content_type = content_type in CSV_CONTENT_TYPES

    if not is_csv_filename and not is_csv_content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV files are allowed.",
        )

    return file


def to_http_exception(exc: InventoryError) -> HTTPException:
    """
    Map a domain error to the HTTP response callers see.

    Store failures never leak backend details to the client.
    """

    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict())
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "conflict", "message": str(exc), "already_completed": exc.already_completed},
        )
    if isinstance(exc, (StoreUnavailableError, RetriableStoreError)):
        logger.warning("Backing store unavailable error=%s", exc)
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=TRY_AGAIN_DETAIL)

    logger.error("Inventory request failed error_type=%s error=%s", type(exc).__name__, exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_DETAIL)


def parse_file_type(value: str) -> FileType:
    try:
        return FileType.parse(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ValidationError.for_field("file_type", "file_type must be csv or xlsx.").to_dict(),
        ) from exc
