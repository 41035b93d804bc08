"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

SPREADSHEET_BACKENDS = {"database", "google_sheets"}
FILE_STORE_BACKENDS = {"local", "google_drive"}

DEFAULT_LOCATIONS: tuple[str, ...] = (
    "Suzuki",
    "Alfa Romeo",
    "Renault",
    "JAC",
    "Car4U",
    "Audi",
    "Stellantis",
    "Bodega Coyote",
    "Bodega Goyo",
)


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_choice_env(name: str, default: str, allowed: set[str]) -> str:
    value = _get_str_env(name, default).lower()
    return value if value in allowed else default


@dataclass(frozen=True)
class SpreadsheetSettings:
    """
    Tabular backend selection and access-layer behavior.
    """

    backend: str = "database"
    spreadsheet_id: str = ""
    access_token: str = ""
    api_base_url: str = "https://sheets.googleapis.com"
    timeout_seconds: float = 15.0
    cache_ttl_seconds: float = 120.0
    cache_max_entries: int = 500
    max_retries: int = 3
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 10.0
    summary_sheet_name: str = "MonthlySummary"


@dataclass(frozen=True)
class RateLimitSettings:
    """
    Shared quota budget for backing-store calls.
    """

    min_interval_seconds: float = 0.5
    max_requests_per_minute: int = 30
    degraded_threshold: float = 0.8
    degraded_min_interval_seconds: float = 1.0
    degraded_max_requests_per_minute: int = 20


@dataclass(frozen=True)
class InventorySettings:
    """
    Session limits and summary verification behavior.
    """

    max_sessions_per_month: int = 2
    max_active_sessions: int = 1
    verify_attempts: int = 3
    verify_base_delay_seconds: float = 1.0
    locations: tuple[str, ...] = DEFAULT_LOCATIONS


@dataclass(frozen=True)
class FileStorageSettings:
    """
    Backup file store and retention settings.
    """

    backend: str = "local"
    local_root: str = "data/inventory_files"
    drive_root_folder_id: str = "root"
    drive_access_token: str = ""
    drive_api_base_url: str = "https://www.googleapis.com"
    drive_upload_base_url: str = "https://www.googleapis.com"
    timeout_seconds: float = 30.0
    tracking_sheet_name: str = "FileStorage"
    retention_days: int = 30


@dataclass(frozen=True)
class LabelSettings:
    """
    QR label generation limits and archive retention.
    """

    archive_dir: str = "data/label_archives"
    archive_grace_minutes: int = 60
    max_upload_bytes: int = 10 * 1024 * 1024


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Cron schedule for maintenance jobs (UTC).
    """

    enabled: bool = True
    retention_sweep_hour: int = 2
    retention_sweep_minute: int = 0
    archive_purge_minute: int = 15


@lru_cache(maxsize=1)
def get_spreadsheet_settings() -> SpreadsheetSettings:
    """
    Return cached tabular backend settings from environment variables.
    """

    return SpreadsheetSettings(
        backend=_get_choice_env("SPREADSHEET_BACKEND", "database", SPREADSHEET_BACKENDS),
        spreadsheet_id=_get_str_env("GOOGLE_SHEETS_SPREADSHEET_ID", ""),
        access_token=_get_str_env("GOOGLE_SHEETS_ACCESS_TOKEN", ""),
        api_base_url=_get_str_env("GOOGLE_SHEETS_API_BASE_URL", "https://sheets.googleapis.com"),
        timeout_seconds=max(1.0, _get_float_env("SPREADSHEET_TIMEOUT_SECONDS", 15.0)),
        cache_ttl_seconds=max(0.0, _get_float_env("SPREADSHEET_CACHE_TTL_SECONDS", 120.0)),
        cache_max_entries=max(1, _get_int_env("SPREADSHEET_CACHE_MAX_ENTRIES", 500)),
        max_retries=max(0, _get_int_env("SPREADSHEET_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.0, _get_float_env("SPREADSHEET_BACKOFF_INITIAL_SECONDS", 1.0)),
        backoff_max_seconds=max(0.0, _get_float_env("SPREADSHEET_BACKOFF_MAX_SECONDS", 10.0)),
        summary_sheet_name=_get_str_env("SUMMARY_SHEET_NAME", "MonthlySummary"),
    )


@lru_cache(maxsize=1)
def get_rate_limit_settings() -> RateLimitSettings:
    """
    Return the backing-store quota budget from environment variables.
    """

    return RateLimitSettings(
        min_interval_seconds=max(0.0, _get_float_env("RATE_LIMIT_MIN_INTERVAL_SECONDS", 0.5)),
        max_requests_per_minute=max(1, _get_int_env("RATE_LIMIT_MAX_REQUESTS_PER_MINUTE", 30)),
        degraded_threshold=min(1.0, max(0.1, _get_float_env("RATE_LIMIT_DEGRADED_THRESHOLD", 0.8))),
        degraded_min_interval_seconds=max(0.0, _get_float_env("RATE_LIMIT_DEGRADED_MIN_INTERVAL_SECONDS", 1.0)),
        degraded_max_requests_per_minute=max(1, _get_int_env("RATE_LIMIT_DEGRADED_MAX_REQUESTS_PER_MINUTE", 20)),
    )


@lru_cache(maxsize=1)
def get_inventory_settings() -> InventorySettings:
    """
    Return session limit settings. INVENTORY_LOCATIONS is a comma-separated list.
    """

    raw_locations = _get_str_env("INVENTORY_LOCATIONS", "")
    locations = tuple(
        " ".join(item.split()) for item in raw_locations.split(",") if item.strip()
    ) or DEFAULT_LOCATIONS
    return InventorySettings(
        max_sessions_per_month=max(1, _get_int_env("INVENTORY_MAX_SESSIONS_PER_MONTH", 2)),
        max_active_sessions=max(1, _get_int_env("INVENTORY_MAX_ACTIVE_SESSIONS", 1)),
        verify_attempts=max(1, _get_int_env("INVENTORY_VERIFY_ATTEMPTS", 3)),
        verify_base_delay_seconds=max(0.0, _get_float_env("INVENTORY_VERIFY_BASE_DELAY_SECONDS", 1.0)),
        locations=locations,
    )


@lru_cache(maxsize=1)
def get_file_storage_settings() -> FileStorageSettings:
    """
    Return backup file store settings from environment variables.
    """

    return FileStorageSettings(
        backend=_get_choice_env("FILE_STORE_BACKEND", "local", FILE_STORE_BACKENDS),
        local_root=_get_str_env("FILE_STORE_LOCAL_ROOT", "data/inventory_files"),
        drive_root_folder_id=_get_str_env("GOOGLE_DRIVE_ROOT_FOLDER_ID", "root"),
        drive_access_token=_get_str_env("GOOGLE_DRIVE_ACCESS_TOKEN", ""),
        drive_api_base_url=_get_str_env("GOOGLE_DRIVE_API_BASE_URL", "https://www.googleapis.com"),
        drive_upload_base_url=_get_str_env("GOOGLE_DRIVE_UPLOAD_BASE_URL", "https://www.googleapis.com"),
        timeout_seconds=max(1.0, _get_float_env("FILE_STORE_TIMEOUT_SECONDS", 30.0)),
        tracking_sheet_name=_get_str_env("FILE_TRACKING_SHEET_NAME", "FileStorage"),
        retention_days=max(1, _get_int_env("FILE_RETENTION_DAYS", 30)),
    )


@lru_cache(maxsize=1)
def get_label_settings() -> LabelSettings:
    """
    Return QR label settings from environment variables.
    """

    return LabelSettings(
        archive_dir=_get_str_env("LABEL_ARCHIVE_DIR", "data/label_archives"),
        archive_grace_minutes=max(1, _get_int_env("LABEL_ARCHIVE_GRACE_MINUTES", 60)),
        max_upload_bytes=max(1024, _get_int_env("LABEL_MAX_UPLOAD_BYTES", 10 * 1024 * 1024)),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """
    Return maintenance job schedule from environment variables.
    """

    return SchedulerSettings(
        enabled=_get_bool_env("SCHEDULER_ENABLED", True),
        retention_sweep_hour=min(23, max(0, _get_int_env("RETENTION_SWEEP_HOUR", 2))),
        retention_sweep_minute=min(59, max(0, _get_int_env("RETENTION_SWEEP_MINUTE", 0))),
        archive_purge_minute=min(59, max(0, _get_int_env("LABEL_ARCHIVE_PURGE_MINUTE", 15))),
    )


@dataclass(frozen=True)
class CollaborationSettings:
    """
    Live inventory room limits and heartbeat timing.
    """

    max_connections_per_room: int = 50
    heartbeat_interval_seconds: float = 30.0
    max_messages_per_minute: int = 100


@lru_cache(maxsize=1)
def get_collaboration_settings() -> CollaborationSettings:
    """
    Return live inventory room settings from environment variables.
    """

    return CollaborationSettings(
        max_connections_per_room=max(1, _get_int_env("WEBSOCKET_MAX_CONNECTIONS_PER_ROOM", 50)),
        heartbeat_interval_seconds=max(1.0, _get_float_env("WEBSOCKET_HEARTBEAT_INTERVAL_SECONDS", 30.0)),
        max_messages_per_minute=max(1, _get_int_env("WEBSOCKET_RATE_LIMIT_MAX_MESSAGES", 100)),
    )
