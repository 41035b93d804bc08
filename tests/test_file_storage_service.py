"""
tests/test_file_storage_service.py

Pytest unit tests for FileStorageService.

Coverage
--------
- Store: filename, expiry, tracking row, removal of the upload when tracking fails
- Lookup by period, type and session
- Download counter is best-effort; expired files are not served
- Retention sweep: only expired files, failed deletes stay Active
- Statistics
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.domain.errors import NotFoundError, StoreUnavailableError
from app.domain.file_storage import FileStatus, FileType
from app.services.file_storage_service import FileStorageService, session_file_tag
from tests.conftest import InMemoryFileStore, InMemoryTabularStore

SESSION_ID = "inv_1234abcd-0000-4000-8000-000000000000"


class TestStoreFile:
    def test_store_tracks_file_with_fixed_expiry(
        self,
        storage_service: FileStorageService,
        file_store: InMemoryFileStore,
        tabular_store: InMemoryTabularStore,
        clock,
    ) -> None:
        record = storage_service.store_file("Bodega Coyote", "08", 2025, "xlsx", b"payload", session_id=SESSION_ID)

        assert record.filename == "Bodega_Coyote_August_2025_1234abcd_20250805T153000Z.xlsx"
        assert record.expires_at == clock() + timedelta(days=30)
        assert record.status is FileStatus.ACTIVE
        assert file_store.files[record.file_id]["content"] == b"payload"
        assert "Bodega Coyote" in file_store.folders
        tracked = tabular_store.data_rows("FileStorage")
        assert len(tracked) == 1
        assert tracked[0][0] == record.file_id
        assert tracked[0][10] == "Active"

    def test_tracking_failure_removes_uploaded_file(
        self,
        storage_service: FileStorageService,
        file_store: InMemoryFileStore,
        tabular_store: InMemoryTabularStore,
    ) -> None:
        tabular_store.fail("append_row", "FileStorage", times=3)

        with pytest.raises(StoreUnavailableError):
            storage_service.store_file("Suzuki", 8, 2025, FileType.CSV, b"a,b\n")

        assert file_store.files == {}
        assert tabular_store.data_rows("FileStorage") == []

    def test_upload_failure_writes_no_tracking_row(
        self,
        storage_service: FileStorageService,
        file_store: InMemoryFileStore,
        tabular_store: InMemoryTabularStore,
    ) -> None:
        file_store.fail_uploads = True

        with pytest.raises(StoreUnavailableError):
            storage_service.store_file("Suzuki", 8, 2025, FileType.CSV, b"a,b\n")

        assert tabular_store.data_rows("FileStorage") == []


class TestLookup:
    def test_list_files_newest_first_and_filtered(self, storage_service: FileStorageService, clock) -> None:
        july = storage_service.store_file("Suzuki", 7, 2025, "csv", b"1")
        clock.advance(hours=1)
        august = storage_service.store_file("Suzuki", 8, 2025, "csv", b"2")
        storage_service.store_file("Audi", 8, 2025, "csv", b"3")

        assert [record.file_id for record in storage_service.list_files("suzuki")] == [august.file_id, july.file_id]
        assert [record.file_id for record in storage_service.list_files("Suzuki", month=7, year=2025)] == [
            july.file_id
        ]
        assert len(storage_service.list_all_files()) == 3

    def test_find_backup_by_type_and_session(self, storage_service: FileStorageService) -> None:
        tagged = storage_service.store_file("Suzuki", 8, 2025, "xlsx", b"x", session_id=SESSION_ID)

        assert storage_service.find_backup("Suzuki", 8, 2025).file_id == tagged.file_id
        assert storage_service.find_backup("Suzuki", 8, 2025, "csv") is None
        assert storage_service.find_backup("Suzuki", 8, 2025, session_id=SESSION_ID).file_id == tagged.file_id
        assert storage_service.find_backup("Suzuki", 8, 2025, session_id="inv_ffffffff-1111") is None

    def test_session_file_tag(self) -> None:
        assert session_file_tag(SESSION_ID) == "1234abcd"

    def test_unknown_file_is_not_found(self, storage_service: FileStorageService) -> None:
        with pytest.raises(NotFoundError):
            storage_service.get_file_record("missing")


class TestDownload:
    def test_download_increments_counter(self, storage_service: FileStorageService) -> None:
        record = storage_service.store_file("Suzuki", 8, 2025, "csv", b"data")

        downloaded = storage_service.download_file(record.file_id)

        assert downloaded.content == b"data"
        assert downloaded.record.download_count == 1
        assert storage_service.get_file_record(record.file_id).download_count == 1

    def test_counter_failure_still_serves_file(
        self,
        storage_service: FileStorageService,
        tabular_store: InMemoryTabularStore,
    ) -> None:
        record = storage_service.store_file("Suzuki", 8, 2025, "csv", b"data")
        tabular_store.fail("update_row", "FileStorage", times=3)

        downloaded = storage_service.download_file(record.file_id)

        assert downloaded.content == b"data"
        assert storage_service.get_file_record(record.file_id).download_count == 0

    def test_expired_file_is_not_served(self, storage_service: FileStorageService, clock) -> None:
        record = storage_service.store_file("Suzuki", 8, 2025, "csv", b"data")
        storage_service.sweep_expired(now=record.expires_at + timedelta(seconds=1))

        with pytest.raises(NotFoundError):
            storage_service.download_file(record.file_id)


class TestRetentionSweep:
    @pytest.fixture()
    def two_files(self, storage_service: FileStorageService, clock):
        old = storage_service.store_file("Suzuki", 7, 2025, "xlsx", b"old")
        clock.advance(days=10)
        new = storage_service.store_file("Suzuki", 8, 2025, "xlsx", b"new")
        return old, new

    def test_only_expired_files_are_deleted(
        self,
        storage_service: FileStorageService,
        file_store: InMemoryFileStore,
        two_files,
    ) -> None:
        old, new = two_files

        result = storage_service.sweep_expired(now=old.expires_at + timedelta(minutes=1))

        assert result.deleted_count == 1
        assert result.errors == []
        assert list(file_store.files) == [new.file_id]
        assert storage_service.get_file_record(old.file_id).status is FileStatus.EXPIRED
        assert storage_service.get_file_record(new.file_id).status is FileStatus.ACTIVE

    def test_nothing_expires_before_deadline(self, storage_service: FileStorageService, two_files) -> None:
        old, _ = two_files

        result = storage_service.sweep_expired(now=old.expires_at - timedelta(seconds=1))

        assert result.deleted_count == 0

    def test_failed_delete_keeps_row_active(
        self,
        storage_service: FileStorageService,
        file_store: InMemoryFileStore,
        two_files,
    ) -> None:
        old, new = two_files
        file_store.fail_deletes.add(old.file_id)
        later = new.expires_at + timedelta(minutes=1)

        result = storage_service.sweep_expired(now=later)

        assert result.deleted_count == 1
        assert [failure.file_id for failure in result.errors] == [old.file_id]
        assert storage_service.get_file_record(old.file_id).status is FileStatus.ACTIVE
        assert old.file_id in file_store.files

        file_store.fail_deletes.clear()
        retry = storage_service.sweep_expired(now=later)
        assert retry.deleted_count == 1
        assert storage_service.get_file_record(old.file_id).status is FileStatus.EXPIRED

    def test_file_missing_from_store_is_marked_expired(
        self,
        storage_service: FileStorageService,
        file_store: InMemoryFileStore,
        two_files,
    ) -> None:
        old, _ = two_files
        del file_store.files[old.file_id]

        result = storage_service.sweep_expired(now=old.expires_at + timedelta(minutes=1))

        assert result.deleted_count == 1
        assert storage_service.get_file_record(old.file_id).status is FileStatus.EXPIRED


class TestStatistics:
    def test_statistics_group_records(self, storage_service: FileStorageService, clock) -> None:
        old = storage_service.store_file("Suzuki", 7, 2025, "xlsx", b"12345")
        clock.advance(days=10)
        storage_service.store_file("Audi", 8, 2025, "csv", b"123")
        storage_service.sweep_expired(now=old.expires_at + timedelta(minutes=1))

        stats = storage_service.get_statistics()

        assert stats.total_files == 2
        assert stats.active_files == 1
        assert stats.expired_files == 1
        assert stats.total_size == 3
        assert stats.by_location == {"Suzuki": 1, "Audi": 1}
        assert stats.by_type == {"xlsx": 1, "csv": 1}
        assert stats.by_month == {"2025-07": 1, "2025-08": 1}
