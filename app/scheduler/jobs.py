"""
app/scheduler/jobs.py

APScheduler-based maintenance scheduler.

Schedule (all times UTC)
--------------------------
  daily_retention_sweep      : 02:00 every day (RETENTION_SWEEP_HOUR/MINUTE)
  hourly_label_archive_purge : minute 15 of every hour (LABEL_ARCHIVE_PURGE_MINUTE)

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_scheduler_settings
from app.domain.file_storage import SweepResult
from app.services.file_storage_service import get_file_storage_service
from app.services.label_service import get_label_service

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job: Daily retention sweep
# ---------------------------------------------------------------------------


def run_retention_sweep() -> SweepResult | None:
    """
    Delete backups past their retention window.

    Per-file failures are already collected by the sweep; anything that
    aborts the run is logged so the scheduler keeps its next firing.
    """
    logger.info("Scheduler: daily_retention_sweep starting")
    try:
        result = get_file_storage_service().sweep_expired()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: daily_retention_sweep failed: %s", exc)
        return None

    logger.info(
        "Scheduler: daily_retention_sweep complete deleted=%s failed=%s",
        result.deleted_count,
        len(result.errors),
    )
    return result


# ---------------------------------------------------------------------------
# Job: Hourly label archive purge
# ---------------------------------------------------------------------------


def run_label_archive_purge() -> int:
    """
    Remove generated label archives older than the grace window.
    """
    try:
        removed = get_label_service().purge_archives()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: hourly_label_archive_purge failed: %s", exc)
        return 0

    if removed:
        logger.info("Scheduler: hourly_label_archive_purge removed=%s", removed)
    return removed


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler() -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """
    settings = get_scheduler_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_retention_sweep,
        trigger="cron",
        hour=settings.retention_sweep_hour,
        minute=settings.retention_sweep_minute,
        id="daily_retention_sweep",
        name="Daily backup retention sweep",
        replace_existing=True,
        misfire_grace_time=3600,
        max_instances=1,
    )
    scheduler.add_job(
        run_label_archive_purge,
        trigger="cron",
        minute=settings.archive_purge_minute,
        id="hourly_label_archive_purge",
        name="Hourly label archive purge",
        replace_existing=True,
        misfire_grace_time=900,
        max_instances=1,
    )

    return scheduler
