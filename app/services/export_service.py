"""
app/services/export_service.py

Renders a completed inventory session as a downloadable CSV or XLSX file.

Both formats carry the same columns in the same order so a backup can be
re-imported regardless of which type the user picked.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from functools import lru_cache

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from app.domain.file_storage import FileType
from app.domain.inventory import ScanRecord, format_scan_date, month_name
from app.services.inventory_session_service import InventorySnapshot

logger = logging.getLogger(__name__)

EXPORT_COLUMNS: tuple[tuple[str, int], ...] = (
    ("Date", 14),
    ("Identifier", 22),
    ("Scanned By", 30),
    ("Serie", 22),
    ("Marca", 16),
    ("Color", 14),
    ("Ubicacion", 18),
)

_HEADER_FILL = PatternFill(start_color="1F3864", end_color="1F3864", fill_type="solid")
_HEADER_FONT = Font(name="Calibri", bold=True, color="FFFFFF", size=11)


@dataclass(frozen=True)
class ExportFile:
    filename: str
    content: bytes
    media_type: str


def _scan_cells(scan: ScanRecord) -> list[str]:
    car = scan.car_data
    return [
        format_scan_date(scan.scanned_on),
        scan.identifier,
        scan.scanned_by,
        car.serie if car else "",
        car.marca if car else "",
        car.color if car else "",
        car.ubicacion if car else "",
    ]


class ExportService:
    def render(self, snapshot: InventorySnapshot, file_type: FileType | str) -> ExportFile:
        """
        Render ``snapshot`` scans in scan order. Raises ValueError for unknown types.
        """

        file_type = file_type if isinstance(file_type, FileType) else FileType.parse(file_type)
        rows = [_scan_cells(scan) for scan in sorted(snapshot.scans, key=lambda scan: scan.row_number or 0)]
        summary = snapshot.summary
        stem = f"Inventario_{summary.location}_{month_name(summary.month)}_{summary.year}".replace(" ", "_")

        if file_type is FileType.CSV:
            content = self._render_csv(rows)
        else:
            content = self._render_xlsx(rows, sheet_title=f"{month_name(summary.month)} {summary.year}")

        logger.info(
            "Inventory export rendered session_id=%s type=%s rows=%s bytes=%s",
            summary.session_id,
            file_type.value,
            len(rows),
            len(content),
        )
        return ExportFile(filename=f"{stem}.{file_type.value}", content=content, media_type=file_type.media_type)

    @staticmethod
    def _render_csv(rows: list[list[str]]) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow([name for name, _ in EXPORT_COLUMNS])
        writer.writerows(rows)
        # Excel needs the BOM to read accented names.
        return buffer.getvalue().encode("utf-8-sig")

    @staticmethod
    def _render_xlsx(rows: list[list[str]], *, sheet_title: str) -> bytes:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = sheet_title[:31]

        for col_idx, (name, width) in enumerate(EXPORT_COLUMNS, start=1):
            cell = sheet.cell(row=1, column=col_idx, value=name)
            cell.font = _HEADER_FONT
            cell.fill = _HEADER_FILL
            cell.alignment = Alignment(horizontal="center", vertical="center")
            sheet.column_dimensions[get_column_letter(col_idx)].width = width

        for row in rows:
            sheet.append(row)
        sheet.freeze_panes = "A2"

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()


@lru_cache(maxsize=1)
def get_export_service() -> ExportService:
    return ExportService()
