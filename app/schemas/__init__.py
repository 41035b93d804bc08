"""
app/schemas package marker.
"""

from app.schemas.file_storage import BackupResponse, StorageStatsResponse, StoredFileResponse, SweepResponse
from app.schemas.inventory import (
    FinishRequest,
    FinishResponse,
    MonthlyInventoryResponse,
    ScanRequest,
    ScanResponse,
    SummaryResponse,
)
from app.schemas.labels import LabelBatchResponse, LabelScanRequest

__all__ = [
    "BackupResponse",
    "FinishRequest",
    "FinishResponse",
    "LabelBatchResponse",
    "LabelScanRequest",
    "MonthlyInventoryResponse",
    "ScanRequest",
    "ScanResponse",
    "StorageStatsResponse",
    "StoredFileResponse",
    "SummaryResponse",
    "SweepResponse",
]
