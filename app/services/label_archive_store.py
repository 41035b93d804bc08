"""
app/services/label_archive_store.py

Short-lived on-disk storage for generated label archives.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path

from app.domain.errors import NotFoundError, StoreRequestError, ValidationError

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^qr_[0-9a-f]{32}$")


class LabelArchiveStore:
    """
    Keeps ``{session_id}.zip`` files until the grace window elapses.
    """

    def __init__(self, root_dir: str | Path = "data/label_archives") -> None:
        self._root_dir = Path(root_dir)

    def save(self, session_id: str, content: bytes) -> Path:
        target = self._path_for(session_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(".zip.tmp")
        try:
            tmp_path.write_bytes(content)
            tmp_path.replace(target)
        except OSError as exc:
            raise StoreRequestError("Failed to write label archive.") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
        return target

    def load(self, session_id: str) -> bytes:
        target = self._path_for(session_id)
        if not target.is_file():
            raise NotFoundError(f"Label archive {session_id} not found or already expired.")
        return target.read_bytes()

    def purge_older_than(self, max_age_seconds: float, *, now: float | None = None) -> int:
        """
        Delete archives last modified more than ``max_age_seconds`` ago.
        """

        if not self._root_dir.is_dir():
            return 0
        cutoff = (now if now is not None else time.time()) - max_age_seconds
        removed = 0
        for path in self._root_dir.glob("qr_*.zip"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as exc:
                logger.warning("Label archive purge failed path=%s error=%s", path, exc)
        if removed:
            logger.info("Label archives purged count=%s", removed)
        return removed

    def _path_for(self, session_id: str) -> Path:
        if not SESSION_ID_PATTERN.match(session_id or ""):
            raise ValidationError.for_field("session_id", "Invalid label batch session id.")
        return self._root_dir / f"{session_id}.zip"
