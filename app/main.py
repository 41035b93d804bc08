from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI


def _validate_env() -> None:
    """
    Validate all required environment variables at startup.

    Runs before any service or database connection is initialised.
    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - No empty-string values are accepted for required variables.
    - The database tabular backend needs a database URL.
    - The Google Sheets backend needs a spreadsheet id and an access token.
    - The Google Drive file store needs an access token.
    """

    from app.config import FILE_STORE_BACKENDS, SPREADSHEET_BACKENDS
    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Tabular backend ------------------------------------------------
    spreadsheet_backend = os.getenv("SPREADSHEET_BACKEND", "database").strip().lower()
    if spreadsheet_backend not in SPREADSHEET_BACKENDS:
        errors.append(
            f"SPREADSHEET_BACKEND='{spreadsheet_backend}' is not valid. "
            f"Allowed values: {sorted(SPREADSHEET_BACKENDS)}."
        )
    elif spreadsheet_backend == "database":
        if not any(
            os.getenv(name, "").strip()
            for name in ("DATABASE_URL", "CLOUD_DATABASE_URL", "LOCAL_DATABASE_URL")
        ):
            errors.append(
                "No database URL configured. Set DATABASE_URL, LOCAL_DATABASE_URL or "
                "CLOUD_DATABASE_URL, or use SPREADSHEET_BACKEND=google_sheets."
            )
    else:
        for name in ("GOOGLE_SHEETS_SPREADSHEET_ID", "GOOGLE_SHEETS_ACCESS_TOKEN"):
            if not os.getenv(name, "").strip():
                errors.append(f"{name} is not set but SPREADSHEET_BACKEND is google_sheets.")

    # --- File store -----------------------------------------------------
    file_backend = os.getenv("FILE_STORE_BACKEND", "local").strip().lower()
    if file_backend not in FILE_STORE_BACKENDS:
        errors.append(
            f"FILE_STORE_BACKEND='{file_backend}' is not valid. "
            f"Allowed values: {sorted(FILE_STORE_BACKENDS)}."
        )
    elif file_backend == "google_drive" and not os.getenv("GOOGLE_DRIVE_ACCESS_TOKEN", "").strip():
        errors.append("GOOGLE_DRIVE_ACCESS_TOKEN is not set but FILE_STORE_BACKEND is google_drive.")

    if errors:
        raise RuntimeError(
            "Startup validation failed: missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _check_schema() -> None:
    """
    Make sure the ``sheet_rows`` table exists when the database backend is used.

    Does NOT auto-migrate.
    """
    from sqlalchemy import inspect as sa_inspect

    import db.models  # noqa: F401  registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    try:
        actual: set[str] = set(sa_inspect(get_engine()).get_table_names())
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc
    expected: set[str] = set(Base.metadata.tables.keys())
    missing = expected - actual

    if missing:
        logging.getLogger(__name__).critical(
            "Schema mismatch: %d table(s) defined in ORM metadata are absent from "
            "the database: %s. Run 'alembic upgrade head' and restart.",
            len(missing),
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Validate the schema and start the scheduler on boot; shut it and the live rooms down on exit."""
    from app.config import get_scheduler_settings, get_spreadsheet_settings
    from app.services.inventory_room_service import get_inventory_room_manager

    log = logging.getLogger(__name__)
    if get_spreadsheet_settings().backend == "database":
        _check_schema()
        log.info("Database schema validated")

    if not get_scheduler_settings().enabled:
        log.info("Scheduler disabled")
        try:
            yield
        finally:
            get_inventory_room_manager().close_all()
        return

    from app.scheduler.jobs import build_scheduler

    scheduler = build_scheduler()
    scheduler.start()
    log.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        get_inventory_room_manager().close_all()
        scheduler.shutdown(wait=True)
        log.info("Scheduler shut down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="Car Inventory API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import file_storage_router, inventory_room_router, inventory_router, label_router

    application.include_router(inventory_router)
    application.include_router(inventory_room_router)
    application.include_router(label_router)
    application.include_router(file_storage_router)

    return application


app = create_app()
