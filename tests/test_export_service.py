"""
tests/test_export_service.py

Pytest unit tests for ExportService CSV and XLSX rendering.
"""

from __future__ import annotations

import csv
import io
from datetime import date, datetime, timezone

import pytest
from openpyxl import load_workbook

from app.domain.file_storage import FileType
from app.domain.inventory import CarDataRow, MonthlySummaryRecord, ScanRecord, SessionStatus
from app.services.export_service import EXPORT_COLUMNS, ExportService
from app.services.inventory_session_service import InventorySnapshot


@pytest.fixture()
def snapshot() -> InventorySnapshot:
    created = datetime(2025, 8, 1, 9, 0, tzinfo=timezone.utc)
    summary = MonthlySummaryRecord(
        location="Alfa Romeo",
        month=8,
        year=2025,
        status=SessionStatus.COMPLETED,
        created_at=created,
        created_by="ana.lopez@example.com",
        user_name="Ana Lopez",
        total_scans=2,
        session_id="inv_export",
        completed_at=created,
        completed_by="ana.lopez@example.com",
    )
    scans = [
        ScanRecord(
            scanned_on=date(2025, 8, 3),
            identifier="1HGBH41JXMN109186",
            scanned_by="jose.nuñez@example.com",
            session_id="inv_export",
            car_data=CarDataRow("1HGBH41JXMN109186", "Alfa Romeo", "Azul", "Patio Señal"),
            row_number=3,
        ),
        ScanRecord(
            scanned_on=date(2025, 8, 2),
            identifier="ABC12345",
            scanned_by="ana.lopez@example.com",
            session_id="inv_export",
            row_number=2,
        ),
    ]
    return InventorySnapshot(summary=summary, scans=scans)


class TestExportService:
    def test_csv_has_bom_header_and_rows_in_sheet_order(self, snapshot: InventorySnapshot) -> None:
        export = ExportService().render(snapshot, FileType.CSV)

        assert export.filename == "Inventario_Alfa_Romeo_August_2025.csv"
        assert export.media_type == "text/csv"
        assert export.content.startswith(b"\xef\xbb\xbf")
        rows = list(csv.reader(io.StringIO(export.content.decode("utf-8-sig"))))
        assert rows[0] == [name for name, _ in EXPORT_COLUMNS]
        assert rows[1] == ["Aug 2, 2025", "ABC12345", "ana.lopez@example.com", "", "", "", ""]
        assert rows[2][1] == "1HGBH41JXMN109186"
        assert rows[2][6] == "Patio Señal"

    def test_xlsx_is_styled_and_frozen(self, snapshot: InventorySnapshot) -> None:
        export = ExportService().render(snapshot, "excel")

        assert export.filename == "Inventario_Alfa_Romeo_August_2025.xlsx"
        workbook = load_workbook(io.BytesIO(export.content))
        sheet = workbook.active
        assert sheet.title == "August 2025"
        assert sheet.freeze_panes == "A2"
        assert [cell.value for cell in sheet[1]] == [name for name, _ in EXPORT_COLUMNS]
        assert sheet["A1"].font.bold is True
        assert sheet.max_row == 3
        assert sheet["B2"].value == "ABC12345"
        assert sheet["C3"].value == "jose.nuñez@example.com"

    def test_empty_session_renders_header_only(self, snapshot: InventorySnapshot) -> None:
        empty = InventorySnapshot(summary=snapshot.summary, scans=[])

        export = ExportService().render(empty, FileType.CSV)

        assert export.content.decode("utf-8-sig").splitlines() == [",".join(name for name, _ in EXPORT_COLUMNS)]

    def test_unknown_type_is_rejected(self, snapshot: InventorySnapshot) -> None:
        with pytest.raises(ValueError):
            ExportService().render(snapshot, "pdf")
