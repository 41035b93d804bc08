"""
tests/test_database_sheet_store.py

Pytest tests for the relational tabular backend on a temporary SQLite file.
"""

from __future__ import annotations

from typing import Iterator

import pytest

from app.connectors.database_sheet_store import DatabaseSheetStore
from app.domain.errors import NotFoundError
from db.base import Base
from db.session import build_session_factory, create_db_engine

HEADERS = ["Date", "Identifier", "Scanned By"]


@pytest.fixture()
def store(tmp_path) -> Iterator[DatabaseSheetStore]:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'sheets.db'}")
    Base.metadata.create_all(engine)
    yield DatabaseSheetStore(build_session_factory(engine))
    engine.dispose()


class TestDatabaseSheetStore:
    def test_ensure_sheet_writes_header_once(self, store: DatabaseSheetStore) -> None:
        store.ensure_sheet("Suzuki", HEADERS)
        store.ensure_sheet("Suzuki", ["ignored"])

        assert store.read_rows("Suzuki") == [HEADERS]

    def test_append_places_rows_after_header(self, store: DatabaseSheetStore) -> None:
        store.ensure_sheet("Suzuki", HEADERS)
        store.append_row("Suzuki", ["Aug 5, 2025", "ABC12345", "ana@example.com"])
        store.append_row("Suzuki", ["Aug 5, 2025", "ABC12346", "ana@example.com"])

        rows = store.read_rows("Suzuki")

        assert rows[0] == HEADERS
        assert [row[1] for row in rows[1:]] == ["ABC12345", "ABC12346"]

    def test_append_without_header_leaves_row_one_free(self, store: DatabaseSheetStore) -> None:
        store.append_row("Audi", ["x"])

        assert store.read_rows("Audi") == [[], ["x"]]

    def test_update_and_missing_row(self, store: DatabaseSheetStore) -> None:
        store.ensure_sheet("Suzuki", HEADERS)
        store.append_row("Suzuki", ["a", "b", "c"])

        store.update_row("Suzuki", 2, ["", "", ""])

        assert store.read_rows("Suzuki")[1] == ["", "", ""]
        with pytest.raises(NotFoundError):
            store.update_row("Suzuki", 9, ["x"])

    def test_clear_keeps_header_and_other_sheets(self, store: DatabaseSheetStore) -> None:
        for sheet in ("Suzuki", "Audi"):
            store.ensure_sheet(sheet, HEADERS)
            store.append_row(sheet, ["a", "b", "c"])

        store.clear_sheet("Suzuki")

        assert store.read_rows("Suzuki") == [HEADERS]
        assert len(store.read_rows("Audi")) == 2

    def test_unknown_sheet_reads_empty(self, store: DatabaseSheetStore) -> None:
        assert store.read_rows("Unknown") == []
