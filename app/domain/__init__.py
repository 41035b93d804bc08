"""
app/domain package marker.
"""

from app.domain.errors import (
    ConflictError,
    IntegrityError,
    InventoryError,
    NotFoundError,
    RetriableStoreError,
    StoreUnavailableError,
    ValidationError,
)
from app.domain.file_storage import FileStatus, FileType, StoredFileRecord
from app.domain.inventory import MonthlySummaryRecord, ScanRecord, SessionStatus

__all__ = [
    "ConflictError",
    "FileStatus",
    "FileType",
    "IntegrityError",
    "InventoryError",
    "MonthlySummaryRecord",
    "NotFoundError",
    "RetriableStoreError",
    "ScanRecord",
    "SessionStatus",
    "StoreUnavailableError",
    "StoredFileRecord",
    "ValidationError",
]
