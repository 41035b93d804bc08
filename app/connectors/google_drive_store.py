"""
app/connectors/google_drive_store.py

File store backed by the Google Drive v3 API.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid

import requests

from app.config import FileStorageSettings
from app.connectors.base import FileHandle, GoogleAPIClient
from app.domain.inventory import parse_timestamp

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveStore(GoogleAPIClient):
    """
    Keeps one sub-folder per location under a configured root folder.
    """

    source = "google_drive"

    def __init__(
        self,
        *,
        settings: FileStorageSettings,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            access_token=settings.drive_access_token,
            timeout_seconds=settings.timeout_seconds,
            session=session,
        )
        self._files_url = f"{settings.drive_api_base_url.rstrip('/')}/drive/v3/files"
        self._upload_url = f"{settings.drive_upload_base_url.rstrip('/')}/upload/drive/v3/files"
        self._root_folder_id = settings.drive_root_folder_id
        self._folder_ids: dict[str, str] = {}
        self._folder_lock = threading.Lock()

    def ensure_folder(self, name: str) -> str:
        with self._folder_lock:
            cached = self._folder_ids.get(name)
            if cached:
                return cached

            query = (
                f"name = '{_escape_query(name)}' and mimeType = '{FOLDER_MIME_TYPE}' "
                f"and '{self._root_folder_id}' in parents and trashed = false"
            )
            payload = self._request_json(
                method="GET",
                url=self._files_url,
                params={"q": query, "fields": "files(id,name)", "pageSize": 10},
            )
            folders = payload.get("files", [])
            if folders:
                folder_id = folders[0]["id"]
            else:
                created = self._request_json(
                    method="POST",
                    url=self._files_url,
                    params={"fields": "id"},
                    json_body={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [self._root_folder_id]},
                )
                folder_id = created["id"]
                logger.info("Created Drive folder name=%s id=%s", name, folder_id)

            self._folder_ids[name] = folder_id
            return folder_id

    def upload_file(self, folder_id: str, filename: str, content: bytes, mime_type: str) -> FileHandle:
        boundary = f"inventory-{uuid.uuid4().hex}"
        metadata = json.dumps({"name": filename, "parents": [folder_id]}).encode("utf-8")
        body = b"".join(
            [
                f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode("utf-8"),
                metadata,
                f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode("utf-8"),
                content,
                f"\r\n--{boundary}--\r\n".encode("utf-8"),
            ]
        )
        payload = self._request_json(
            method="POST",
            url=self._upload_url,
            params={"uploadType": "multipart", "fields": "id,name,size,createdTime"},
            data=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        return self._to_handle(payload, fallback_size=len(content))

    def list_files(self, folder_id: str) -> list[FileHandle]:
        handles: list[FileHandle] = []
        page_token: str | None = None
        while True:
            params = {
                "q": f"'{folder_id}' in parents and trashed = false and mimeType != '{FOLDER_MIME_TYPE}'",
                "fields": "nextPageToken,files(id,name,size,createdTime)",
                "orderBy": "createdTime desc",
                "pageSize": 100,
            }
            if page_token:
                params["pageToken"] = page_token
            payload = self._request_json(method="GET", url=self._files_url, params=params)
            handles.extend(self._to_handle(item) for item in payload.get("files", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return handles

    def download_file(self, file_id: str) -> bytes:
        response = self._request(
            method="GET",
            url=f"{self._files_url}/{file_id}",
            params={"alt": "media"},
        )
        return response.content

    def delete_file(self, file_id: str) -> None:
        self._request(method="DELETE", url=f"{self._files_url}/{file_id}")

    @staticmethod
    def _to_handle(payload: dict, fallback_size: int = 0) -> FileHandle:
        created = payload.get("createdTime")
        return FileHandle(
            file_id=payload["id"],
            name=payload.get("name", ""),
            size=int(payload.get("size") or fallback_size),
            created_at=parse_timestamp(created) if created else None,
        )
