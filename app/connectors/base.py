"""
app/connectors/base.py

Backing store interfaces and shared HTTP mechanics for the Google backends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, Sequence

import requests

from app.domain.errors import NotFoundError, RetriableStoreError, StoreRequestError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class TabularStore(Protocol):
    """
    Sheet-oriented store. Row 1 of every sheet holds the headers.
    """

    def read_rows(self, sheet: str) -> list[list[str]]:
        ...

    def append_row(self, sheet: str, values: Sequence[str]) -> None:
        ...

    def update_row(self, sheet: str, row_number: int, values: Sequence[str]) -> None:
        ...

    def clear_sheet(self, sheet: str) -> None:
        ...

    def ensure_sheet(self, sheet: str, headers: Sequence[str]) -> None:
        ...


@dataclass(frozen=True)
class FileHandle:
    file_id: str
    name: str
    size: int = 0
    created_at: datetime | None = None


class FileStore(Protocol):
    """
    Folder/file blob store.
    """

    def ensure_folder(self, name: str) -> str:
        ...

    def upload_file(self, folder_id: str, filename: str, content: bytes, mime_type: str) -> FileHandle:
        ...

    def list_files(self, folder_id: str) -> list[FileHandle]:
        ...

    def download_file(self, file_id: str) -> bytes:
        ...

    def delete_file(self, file_id: str) -> None:
        ...


class GoogleAPIClient:
    """
    One-shot authorized requests against a Google REST API.

    Failures are translated into the store error taxonomy; retrying is the
    caller's concern.
    """

    source: str = "google"

    def __init__(
        self,
        *,
        access_token: str,
        timeout_seconds: float,
        session: requests.Session | None = None,
    ) -> None:
        self._session = session or requests.Session()
        self._access_token = access_token
        self._timeout_seconds = timeout_seconds

    def _request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        request_headers = {"Authorization": f"Bearer {self._access_token}"}
        if headers:
            request_headers.update(headers)
        try:
            response = self._session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                data=data,
                headers=request_headers,
                timeout=self._timeout_seconds,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise RetriableStoreError(f"{self.source}: request to backing store timed out or failed.") from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetriableStoreError(f"{self.source}: backing store returned {response.status_code}.")
        if response.status_code == 404:
            raise NotFoundError(f"{self.source}: resource not found.")
        if response.status_code >= 400:
            logger.error(
                "Store request failed source=%s status=%s method=%s url=%s body=%s",
                self.source,
                response.status_code,
                method,
                url,
                response.text[:500],
            )
            raise StoreRequestError(f"{self.source}: request rejected with status {response.status_code}.")
        return response

    def _request_json(self, **kwargs: Any) -> Any:
        response = self._request(**kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise StoreRequestError(f"{self.source}: response was not valid JSON.") from exc
