"""
app/services package marker.
"""

from app.services.file_storage_service import FileStorageService, get_file_storage_service
from app.services.inventory_backup_service import InventoryBackupService, get_inventory_backup_service
from app.services.inventory_session_service import InventorySessionService, get_inventory_session_service
from app.services.label_service import LabelService, get_label_service

__all__ = [
    "FileStorageService",
    "get_file_storage_service",
    "InventoryBackupService",
    "get_inventory_backup_service",
    "InventorySessionService",
    "get_inventory_session_service",
    "LabelService",
    "get_label_service",
]
