"""
app/connectors/google_sheets_store.py

Tabular store backed by the Google Sheets v4 values API.
"""

from __future__ import annotations

import logging
from typing import Sequence
from urllib.parse import quote

import requests

from app.config import SpreadsheetSettings
from app.connectors.base import GoogleAPIClient

logger = logging.getLogger(__name__)

_LAST_COLUMN = "Z"


def _a1_range(sheet: str, cells: str) -> str:
    escaped = sheet.replace("'", "''")
    return quote(f"'{escaped}'!{cells}", safe="")


class GoogleSheetsStore(GoogleAPIClient):
    """
    Reads and writes whole rows of one spreadsheet.
    """

    source = "google_sheets"

    def __init__(
        self,
        *,
        settings: SpreadsheetSettings,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            access_token=settings.access_token,
            timeout_seconds=settings.timeout_seconds,
            session=session,
        )
        self._base_url = f"{settings.api_base_url.rstrip('/')}/v4/spreadsheets/{settings.spreadsheet_id}"
        self._known_sheets: set[str] = set()

    def read_rows(self, sheet: str) -> list[list[str]]:
        payload = self._request_json(
            method="GET",
            url=f"{self._base_url}/values/{_a1_range(sheet, f'A:{_LAST_COLUMN}')}",
            params={"valueRenderOption": "FORMATTED_VALUE"},
        )
        return [[str(cell) for cell in row] for row in payload.get("values", [])]

    def append_row(self, sheet: str, values: Sequence[str]) -> None:
        self._request(
            method="POST",
            url=f"{self._base_url}/values/{_a1_range(sheet, 'A1')}:append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json_body={"values": [list(values)]},
        )

    def update_row(self, sheet: str, row_number: int, values: Sequence[str]) -> None:
        self._request(
            method="PUT",
            url=f"{self._base_url}/values/{_a1_range(sheet, f'A{row_number}:{_LAST_COLUMN}{row_number}')}",
            params={"valueInputOption": "RAW"},
            json_body={"values": [list(values)]},
        )

    def clear_sheet(self, sheet: str) -> None:
        self._request(
            method="POST",
            url=f"{self._base_url}/values/{_a1_range(sheet, f'A2:{_LAST_COLUMN}')}:clear",
            json_body={},
        )

    def ensure_sheet(self, sheet: str, headers: Sequence[str]) -> None:
        if sheet in self._known_sheets:
            return
        metadata = self._request_json(
            method="GET",
            url=self._base_url,
            params={"fields": "sheets.properties.title"},
        )
        titles = {item.get("properties", {}).get("title") for item in metadata.get("sheets", [])}
        if sheet not in titles:
            self._request(
                method="POST",
                url=f"{self._base_url}:batchUpdate",
                json_body={"requests": [{"addSheet": {"properties": {"title": sheet}}}]},
            )
            logger.info("Created sheet name=%s", sheet)
        first_row = self._request_json(
            method="GET",
            url=f"{self._base_url}/values/{_a1_range(sheet, f'A1:{_LAST_COLUMN}1')}",
        ).get("values", [])
        if not first_row:
            self.update_row(sheet, 1, headers)
        self._known_sheets.add(sheet)
