"""
tests/test_backup_service.py

Pytest unit tests for InventoryBackupService.

Coverage
--------
- A failed upload leaves the scan sheet populated
- A successful backup stores the file and clears the scans
- A re-run after a failed clear reuses the stored backup
- Downloads serve the latest session's stored backup, regenerate when missing,
  and refuse when the scans are gone and the backup has expired
"""

from __future__ import annotations

import io
from datetime import timedelta

import pytest
from openpyxl import load_workbook

from app.domain.errors import NotFoundError, StoreUnavailableError
from app.domain.file_storage import FileType
from app.services.file_storage_service import FileStorageService, session_file_tag
from app.services.inventory_backup_service import InventoryBackupService
from app.services.inventory_session_service import InventorySessionService
from app.validators.inventory_validator import validate_scan_input
from tests.conftest import InMemoryFileStore, InMemoryTabularStore

USER = "ana.lopez@example.com"


@pytest.fixture()
def completed_session(session_service: InventorySessionService, clock) -> str:
    for code in ("ABC12345", "ABC12346"):
        session_service.save_scan(
            validate_scan_input(
                location="Suzuki",
                identifier=code,
                user=USER,
                user_name="Ana Lopez",
                month="08",
                year=2025,
                now=clock(),
            )
        )
    return session_service.finish_session("Suzuki", 8, 2025, USER).session_id


class TestBackUpSession:
    def test_failed_upload_leaves_scans_in_place(
        self,
        backup_service: InventoryBackupService,
        file_store: InMemoryFileStore,
        tabular_store: InMemoryTabularStore,
        completed_session: str,
    ) -> None:
        file_store.fail_uploads = True

        with pytest.raises(StoreUnavailableError):
            backup_service.back_up_session("Suzuki", 8, 2025)

        assert len(tabular_store.data_rows("Suzuki")) == 2
        assert tabular_store.data_rows("FileStorage") == []

    def test_backup_stores_file_then_clears_scans(
        self,
        backup_service: InventoryBackupService,
        file_store: InMemoryFileStore,
        tabular_store: InMemoryTabularStore,
        completed_session: str,
    ) -> None:
        result = backup_service.back_up_session("Suzuki", 8, 2025)

        assert result.session_id == completed_session
        assert result.cleared_rows == 2
        assert result.reused_existing is False
        assert tabular_store.data_rows("Suzuki") == []
        workbook = load_workbook(io.BytesIO(file_store.files[result.record.file_id]["content"]))
        assert workbook.active.max_row == 3

    def test_rerun_after_failed_clear_reuses_backup(
        self,
        backup_service: InventoryBackupService,
        file_store: InMemoryFileStore,
        tabular_store: InMemoryTabularStore,
        completed_session: str,
    ) -> None:
        tabular_store.fail("clear_sheet", "Suzuki", times=3)
        with pytest.raises(StoreUnavailableError):
            backup_service.back_up_session("Suzuki", 8, 2025)
        assert len(file_store.files) == 1
        assert len(tabular_store.data_rows("Suzuki")) == 2

        result = backup_service.back_up_session("Suzuki", 8, 2025)

        assert result.reused_existing is True
        assert result.cleared_rows == 2
        assert len(file_store.files) == 1
        assert tabular_store.data_rows("Suzuki") == []

    def test_active_session_has_nothing_to_back_up(
        self,
        backup_service: InventoryBackupService,
        session_service: InventorySessionService,
    ) -> None:
        session_service.find_or_create_monthly_summary("Suzuki", 8, 2025, USER, "Ana Lopez")

        with pytest.raises(NotFoundError):
            backup_service.back_up_session("Suzuki", 8, 2025)


class TestDownloadInventory:
    def test_download_generates_backup_when_missing(
        self,
        backup_service: InventoryBackupService,
        tabular_store: InMemoryTabularStore,
        completed_session: str,
    ) -> None:
        downloaded = backup_service.download_inventory("Suzuki", 8, 2025, FileType.CSV)

        assert downloaded.record.file_type is FileType.CSV
        assert "ABC12346" in downloaded.content.decode("utf-8-sig")
        assert tabular_store.data_rows("Suzuki") == []

    def test_download_serves_existing_backup_of_other_type(
        self,
        backup_service: InventoryBackupService,
        file_store: InMemoryFileStore,
        completed_session: str,
    ) -> None:
        stored = backup_service.back_up_session("Suzuki", 8, 2025, FileType.XLSX)

        downloaded = backup_service.download_inventory("Suzuki", 8, 2025, "csv")

        assert downloaded.record.file_id == stored.record.file_id
        assert downloaded.record.download_count == 1
        assert len(file_store.files) == 1

    def test_second_session_in_month_is_not_served_first_sessions_backup(
        self,
        backup_service: InventoryBackupService,
        session_service: InventorySessionService,
        tabular_store: InMemoryTabularStore,
        completed_session: str,
        clock,
    ) -> None:
        first = backup_service.back_up_session("Suzuki", 8, 2025, FileType.XLSX)
        clock.advance(hours=2)
        session_service.save_scan(
            validate_scan_input(
                location="Suzuki",
                identifier="XYZ98765",
                user=USER,
                user_name="Ana Lopez",
                month="08",
                year=2025,
                now=clock(),
            )
        )
        second_session = session_service.finish_session("Suzuki", 8, 2025, USER).session_id

        downloaded = backup_service.download_inventory("Suzuki", 8, 2025, FileType.CSV)

        assert second_session != completed_session
        assert downloaded.record.file_id != first.record.file_id
        assert f"_{session_file_tag(second_session)}_" in downloaded.record.filename
        content = downloaded.content.decode("utf-8-sig")
        assert "XYZ98765" in content
        assert "ABC12345" not in content
        assert tabular_store.data_rows("Suzuki") == []

    def test_cleared_scans_without_backup_are_not_found(
        self,
        backup_service: InventoryBackupService,
        storage_service: FileStorageService,
        completed_session: str,
        clock,
    ) -> None:
        backup_service.back_up_session("Suzuki", 8, 2025)
        storage_service.sweep_expired(now=clock() + timedelta(days=31))

        with pytest.raises(NotFoundError):
            backup_service.download_inventory("Suzuki", 8, 2025)
