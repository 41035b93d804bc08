"""
app/connectors/local_file_store.py

Filesystem-backed file store. Folders are sub-directories of a root directory
and file ids are their POSIX paths relative to it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from app.connectors.base import FileHandle
from app.domain.errors import NotFoundError, StoreRequestError, ValidationError


def _safe_name(name: str) -> str:
    safe = Path(name).name.strip()
    if not safe or safe in {".", ".."}:
        raise ValidationError.for_field("filename", "Invalid file or folder name.")
    return safe


class LocalFileStore:
    """
    Local filesystem file store.
    """

    def __init__(self, root_dir: str | Path = "data/inventory_files") -> None:
        self._root_dir = Path(root_dir)

    def ensure_folder(self, name: str) -> str:
        folder = _safe_name(name)
        (self._root_dir / folder).mkdir(parents=True, exist_ok=True)
        return folder

    def upload_file(self, folder_id: str, filename: str, content: bytes, mime_type: str) -> FileHandle:
        relative_path = PurePosixPath(_safe_name(folder_id)) / f"{uuid.uuid4().hex[:8]}_{_safe_name(filename)}"
        absolute_path = self._root_dir / relative_path
        absolute_path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = absolute_path.with_suffix(f"{absolute_path.suffix}.tmp")
        try:
            with tmp_path.open("wb") as handle:
                handle.write(content)
            tmp_path.replace(absolute_path)
        except OSError as exc:
            raise StoreRequestError("Failed to write file to local storage.") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

        return FileHandle(
            file_id=relative_path.as_posix(),
            name=filename,
            size=len(content),
            created_at=datetime.now(timezone.utc),
        )

    def list_files(self, folder_id: str) -> list[FileHandle]:
        folder = self._root_dir / _safe_name(folder_id)
        if not folder.is_dir():
            return []
        handles = [
            FileHandle(
                file_id=PurePosixPath(folder.name, path.name).as_posix(),
                name=path.name,
                size=path.stat().st_size,
                created_at=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
            )
            for path in folder.iterdir()
            if path.is_file() and not path.name.endswith(".tmp")
        ]
        return sorted(handles, key=lambda handle: handle.created_at, reverse=True)

    def download_file(self, file_id: str) -> bytes:
        target = self._resolve(file_id)
        if not target.is_file():
            raise NotFoundError(f"File {file_id} does not exist.")
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StoreRequestError("Failed to read file from local storage.") from exc

    def delete_file(self, file_id: str) -> None:
        target = self._resolve(file_id)
        if not target.is_file():
            raise NotFoundError(f"File {file_id} does not exist.")
        try:
            target.unlink()
        except OSError as exc:
            raise StoreRequestError("Failed to delete file from local storage.") from exc

    def _resolve(self, file_id: str) -> Path:
        parts = PurePosixPath(file_id).parts
        if len(parts) != 2:
            raise NotFoundError(f"File {file_id} does not exist.")
        return self._root_dir / _safe_name(parts[0]) / _safe_name(parts[1])
