"""
app/services/inventory_backup_service.py

Backup orchestration for completed inventory sessions.

Order is fixed: snapshot -> render -> store -> clear. The clear step is handed
the stored record and refuses to run without it, so a failed store always
leaves the scan sheet populated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from app.domain.errors import NotFoundError
from app.domain.file_storage import FileType, StoredFileRecord
from app.logging_utils import log_event
from app.services.export_service import ExportService, get_export_service
from app.services.file_storage_service import DownloadedFile, FileStorageService, get_file_storage_service
from app.services.inventory_session_service import InventorySessionService, get_inventory_session_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupResult:
    record: StoredFileRecord
    session_id: str
    cleared_rows: int
    reused_existing: bool = False


class InventoryBackupService:
    def __init__(
        self,
        sessions: InventorySessionService,
        storage: FileStorageService,
        exporter: ExportService,
    ) -> None:
        self._sessions = sessions
        self._storage = storage
        self._exporter = exporter

    def back_up_session(
        self,
        location: Any,
        month: Any,
        year: Any,
        file_type: FileType | str = FileType.XLSX,
        *,
        session_id: str | None = None,
    ) -> BackupResult:
        """
        Store a backup of the latest completed session, then clear its scans.

        Re-running after a partial failure reuses the backup already stored
        for the session instead of uploading an emptied sheet.
        """

        snapshot = self._sessions.get_session_snapshot(location, month, year, session_id=session_id)
        summary = snapshot.summary

        record = self._storage.find_backup(location, month, year, session_id=summary.session_id)
        reused = record is not None
        if record is None:
            export = self._exporter.render(snapshot, file_type)
            record = self._storage.store_file(
                summary.location,
                summary.month,
                summary.year,
                file_type,
                export.content,
                session_id=summary.session_id,
            )

        cleared = self._sessions.clear_agency_data_after_download(
            summary.location,
            summary.month,
            summary.year,
            summary.session_id,
            backup=record,
        )
        log_event(
            logger,
            logging.INFO,
            "inventory_backup_completed",
            location=summary.location,
            month=summary.month,
            year=summary.year,
            session_id=summary.session_id,
            file_id=record.file_id,
            cleared_rows=cleared,
            reused_existing=reused,
        )
        return BackupResult(record=record, session_id=summary.session_id, cleared_rows=cleared, reused_existing=reused)

    def download_inventory(
        self,
        location: Any,
        month: Any,
        year: Any,
        file_type: FileType | str = FileType.XLSX,
    ) -> DownloadedFile:
        """
        Serve the latest completed session's stored backup, or regenerate and
        back it up.

        A backup of the requested type is preferred; otherwise any Active
        backup of that session is served, since its scans are already cleared.
        Backups of earlier sessions in the same period are never served.
        """

        file_type = file_type if isinstance(file_type, FileType) else FileType.parse(file_type)
        snapshot = self._sessions.get_session_snapshot(location, month, year)
        session_id = snapshot.summary.session_id
        existing = self._storage.find_backup(
            location, month, year, file_type, session_id=session_id
        ) or self._storage.find_backup(location, month, year, session_id=session_id)
        if existing is not None:
            logger.info(
                "Serving stored backup file_id=%s type=%s session_id=%s",
                existing.file_id,
                existing.file_type.value,
                session_id,
            )
            return self._storage.download_file(existing.file_id)

        if not snapshot.scans and snapshot.summary.total_scans > 0:
            raise NotFoundError(
                f"Scans for {snapshot.summary.key} were cleared and their backup is no longer available."
            )

        result = self.back_up_session(location, month, year, file_type, session_id=snapshot.summary.session_id)
        return self._storage.download_file(result.record.file_id)


@lru_cache(maxsize=1)
def get_inventory_backup_service() -> InventoryBackupService:
    return InventoryBackupService(
        get_inventory_session_service(),
        get_file_storage_service(),
        get_export_service(),
    )
