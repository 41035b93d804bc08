"""
app/services/inventory_session_service.py

Monthly inventory sessions: summary bookkeeping, scans and session limits.

Invariants
----------
- ``find_or_create_monthly_summary`` is the only code path that appends
  summary rows. Every other operation fails with NotFoundError rather than
  creating one.
- Creation is create-if-absent without a distributed lock: append, verify the
  row became visible (bounded, growing backoff), then reconcile against any
  racer. The active row with the lowest sheet position wins; a loser blanks
  its own row and returns the winner.
- Scans are appended before the summary counter is incremented, so a crash
  between the two undercounts. ``finish_session`` recounts the scan sheet.
- The scan sheet is only cleared for a completed session and only when the
  caller hands over the stored backup record.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Iterable

from app.config import InventorySettings, get_inventory_settings, get_spreadsheet_settings
from app.domain.errors import ConflictError, IntegrityError, NotFoundError, RetriableStoreError
from app.domain.file_storage import FileStatus, StoredFileRecord
from app.domain.inventory import (
    SCAN_HEADERS,
    SUMMARY_HEADERS,
    MonthlySummaryRecord,
    ScanInput,
    ScanRecord,
    SessionKey,
    SessionStatus,
)
from app.domain.labels import EncodedLabel
from app.logging_utils import log_event
from app.services.spreadsheet_gateway import SheetRow, SpreadsheetGateway, get_spreadsheet_gateway
from app.validators.inventory_validator import parse_location, parse_month, parse_year, validate_scan_input

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_session_id() -> str:
    return f"inv_{uuid.uuid4()}"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryLimits:
    can_start: bool
    current_month_count: int
    active_count: int
    reason: str | None = None
    active_session_id: str | None = None


@dataclass(frozen=True)
class ScanResult:
    summary: MonthlySummaryRecord
    scan: ScanRecord


@dataclass(frozen=True)
class MonthlyInventory:
    key: SessionKey
    status: SessionStatus
    summary: MonthlySummaryRecord | None
    sessions_this_month: int
    scans: list[ScanRecord] = field(default_factory=list)


@dataclass(frozen=True)
class InventorySnapshot:
    summary: MonthlySummaryRecord
    scans: list[ScanRecord]


@dataclass(frozen=True)
class DuplicateCleanupResult:
    groups_found: int = 0
    rows_removed: int = 0
    scans_reassigned: int = 0
    kept_session_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SummaryStructureReport:
    total_rows: int
    valid_rows: int
    malformed_rows: list[int]
    duplicate_active_keys: list[str]

    @property
    def is_valid(self) -> bool:
        return not self.malformed_rows and not self.duplicate_active_keys


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class InventorySessionService:
    """
    Owns MonthlySummaryRecord and ScanRecord lifecycles.
    """

    def __init__(
        self,
        gateway: SpreadsheetGateway,
        *,
        settings: InventorySettings | None = None,
        summary_sheet: str = "MonthlySummary",
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
        session_id_factory: Callable[[], str] = _new_session_id,
    ) -> None:
        self._gateway = gateway
        self._settings = settings or InventorySettings()
        self._summary_sheet = summary_sheet
        self._clock = clock
        self._sleep = sleep
        self._session_id_factory = session_id_factory

    @property
    def locations(self) -> tuple[str, ...]:
        return self._settings.locations

    # -----------------------------------------------------------------------
    # Session limits
    # -----------------------------------------------------------------------

    def check_inventory_limits(self, location: Any, month: Any, year: Any) -> InventoryLimits:
        """
        Count sessions of any status and active sessions for the period.
        """

        key = self._key(location, month, year)
        return self._limits_from(self._summaries_for(key, fresh=True))

    def _limits_from(self, rows: list[MonthlySummaryRecord]) -> InventoryLimits:
        active = [row for row in rows if row.status is SessionStatus.ACTIVE]
        current_month_count = len(rows)
        reason: str | None = None
        if len(active) >= self._settings.max_active_sessions:
            reason = "An inventory session is already active for this location and month."
        elif current_month_count >= self._settings.max_sessions_per_month:
            reason = (
                f"Limit of {self._settings.max_sessions_per_month} inventory sessions "
                "per month reached for this location."
            )
        return InventoryLimits(
            can_start=reason is None,
            current_month_count=current_month_count,
            active_count=len(active),
            reason=reason,
            active_session_id=active[0].session_id if active else None,
        )

    # -----------------------------------------------------------------------
    # Summary creation and counters
    # -----------------------------------------------------------------------

    def find_or_create_monthly_summary(
        self,
        location: Any,
        month: Any,
        year: Any,
        user: str,
        user_name: str,
    ) -> MonthlySummaryRecord:
        """
        Return the active summary for the period, creating it if absent.

        This is the only operation that appends summary rows.
        """

        key = self._key(location, month, year)
        self._ensure_summary_sheet()

        existing = self._summaries_for(key, fresh=True)
        active = self._canonical_active(key, existing)
        if active is not None:
            return active

        limits = self._limits_from(existing)
        if not limits.can_start:
            raise ConflictError(limits.reason or "Inventory session limit reached.")

        record = MonthlySummaryRecord(
            location=key.location,
            month=key.month,
            year=key.year,
            status=SessionStatus.ACTIVE,
            created_at=self._clock(),
            created_by=user,
            user_name=user_name,
            total_scans=0,
            session_id=self._session_id_factory(),
        )
        self._gateway.append_row(self._summary_sheet, record.to_row())

        created = self._verify_created(key, record.session_id)
        if created.session_id == record.session_id:
            log_event(
                logger,
                logging.INFO,
                "inventory_session_created",
                location=key.location,
                month=key.month,
                year=key.year,
                session_id=created.session_id,
                created_by=user,
            )
        return created

    def _verify_created(self, key: SessionKey, session_id: str) -> MonthlySummaryRecord:
        attempts = self._settings.verify_attempts
        for attempt in range(1, attempts + 1):
            rows = self._summaries_for(key, fresh=True)
            mine = next((row for row in rows if row.session_id == session_id), None)
            if mine is not None:
                return self._reconcile_created(key, mine, rows)
            if attempt < attempts:
                delay = self._settings.verify_base_delay_seconds * attempt
                logger.warning(
                    "Summary row not visible yet key=%s session_id=%s attempt=%s/%s wait_seconds=%.2f",
                    key,
                    session_id,
                    attempt,
                    attempts,
                    delay,
                )
                self._sleep(delay)

        logger.error("Summary row never became visible key=%s session_id=%s", key, session_id)
        raise RetriableStoreError(f"Inventory session for {key} is not visible yet; retry the request.")

    def _reconcile_created(
        self,
        key: SessionKey,
        mine: MonthlySummaryRecord,
        rows: list[MonthlySummaryRecord],
    ) -> MonthlySummaryRecord:
        active = sorted(
            (row for row in rows if row.status is SessionStatus.ACTIVE),
            key=lambda row: row.row_number or 0,
        )
        winner = active[0] if active else mine
        if winner.session_id == mine.session_id:
            return mine

        logger.warning(
            "Concurrent summary creation resolved key=%s kept=%s discarded=%s",
            key,
            winner.session_id,
            mine.session_id,
        )
        self._gateway.blank_row(self._summary_sheet, mine.row_number, len(SUMMARY_HEADERS))
        return winner

    def update_monthly_summary(
        self,
        location: Any,
        month: Any,
        year: Any,
        increment: int = 1,
    ) -> MonthlySummaryRecord:
        """
        Add ``increment`` to the active session's scan counter. Never creates rows.
        """

        key = self._key(location, month, year)
        active = self._canonical_active(key, self._summaries_for(key, fresh=True))
        if active is None:
            raise NotFoundError(f"No active inventory session for {key}.")

        updated = active.with_total_scans(active.total_scans + increment)
        self._gateway.update_row(self._summary_sheet, active.row_number, updated.to_row())
        return updated

    # -----------------------------------------------------------------------
    # Scans
    # -----------------------------------------------------------------------

    def save_scan(self, scan: ScanInput) -> ScanResult:
        """
        Record one scan against the period's active session.
        """

        key = SessionKey(self._canonical_location(scan.location), scan.month, scan.year)
        rows = self._summaries_for(key, fresh=True)
        summary = self._canonical_active(key, rows)
        if summary is None:
            limits = self._limits_from(rows)
            if not limits.can_start:
                raise ConflictError(limits.reason or "Inventory session limit reached.")
            summary = self.find_or_create_monthly_summary(
                key.location, key.month, key.year, scan.user, scan.user_name
            )

        self._ensure_scan_sheet(key.location)
        session_scans = self._session_scans(summary, fresh=True)
        if any(existing.identifier.upper() == scan.identifier.upper() for existing in session_scans):
            raise ConflictError(f"{scan.identifier} was already scanned in this inventory session.")

        record = ScanRecord(
            scanned_on=self._clock().date(),
            identifier=scan.identifier,
            scanned_by=scan.user,
            session_id=summary.session_id,
            car_data=scan.car_data,
        )
        self._gateway.append_row(key.location, record.to_row())
        updated = self.update_monthly_summary(key.location, key.month, key.year, increment=1)
        logger.info(
            "Scan saved location=%s session_id=%s identifier=%s total_scans=%s",
            key.location,
            updated.session_id,
            record.identifier,
            updated.total_scans,
        )
        return ScanResult(summary=updated, scan=record)

    def save_label_scan(
        self,
        label: EncodedLabel,
        *,
        user: str,
        user_name: str,
        month: Any = None,
        year: Any = None,
    ) -> ScanResult:
        """
        Record a scan of a generated label against the label's location.
        """

        scan = validate_scan_input(
            location=label.location,
            identifier=label.car.serie,
            user=user,
            user_name=user_name,
            month=month,
            year=year,
            car_data={
                "serie": label.car.serie,
                "marca": label.car.marca,
                "color": label.car.color,
                "ubicacion": label.car.ubicacion,
            },
            now=self._clock(),
        )
        return self.save_scan(scan)

    def delete_scanned_entries(
        self,
        location: Any,
        month: Any,
        year: Any,
        identifiers: Iterable[str],
    ) -> int:
        """
        Remove scans from the active session and decrement its counter.
        """

        key = self._key(location, month, year)
        rows = self._summaries_for(key, fresh=True)
        active = self._canonical_active(key, rows)
        if active is None:
            if any(row.status is SessionStatus.COMPLETED for row in rows):
                raise ConflictError("Completed inventory sessions can no longer be corrected.")
            raise NotFoundError(f"No active inventory session for {key}.")

        wanted = {identifier.strip().upper() for identifier in identifiers if identifier.strip()}
        targets = [scan for scan in self._session_scans(active, fresh=True) if scan.identifier.upper() in wanted]
        if not targets:
            raise NotFoundError("None of the identifiers were scanned in this inventory session.")

        for scan in sorted(targets, key=lambda item: item.row_number or 0, reverse=True):
            self._gateway.blank_row(key.location, scan.row_number, len(SCAN_HEADERS))
        self.update_monthly_summary(key.location, key.month, key.year, increment=-len(targets))
        logger.info("Scanned entries deleted key=%s count=%s", key, len(targets))
        return len(targets)

    # -----------------------------------------------------------------------
    # Session completion and clearing
    # -----------------------------------------------------------------------

    def finish_session(self, location: Any, month: Any, year: Any, user: str) -> MonthlySummaryRecord:
        """
        Complete the active session with an authoritative scan count.

        Raises ConflictError(already_completed=True) when only completed
        sessions exist, and NotFoundError when the period has no session.
        """

        key = self._key(location, month, year)
        rows = self._summaries_for(key, fresh=True)
        active = [row for row in rows if row.status is SessionStatus.ACTIVE]
        if not active:
            if any(row.status is SessionStatus.COMPLETED for row in rows):
                raise ConflictError(
                    f"Inventory session for {key} is already completed.",
                    already_completed=True,
                )
            raise NotFoundError(f"No inventory session found for {key}.")
        if len(active) > 1:
            logger.error(
                "Integrity violation: %s active summary rows key=%s session_ids=%s",
                len(active),
                key,
                [row.session_id for row in active],
            )
            raise IntegrityError(f"Duplicate active sessions found for {key}; run the duplicate cleanup.")

        current = active[0]
        final_count = len(self._session_scans(current, fresh=True))
        finished = current.completed(at=self._clock(), by=user, total_scans=final_count)

        latest = next(
            (row for row in self._summaries_for(key, fresh=True) if row.session_id == current.session_id),
            None,
        )
        if latest is None:
            raise NotFoundError(f"Inventory session {current.session_id} disappeared before finishing.")
        if latest.status is SessionStatus.COMPLETED:
            raise ConflictError(
                f"Inventory session for {key} is already completed.",
                already_completed=True,
            )

        finished = replace(finished, row_number=latest.row_number)
        self._gateway.update_row(self._summary_sheet, finished.row_number, finished.to_row())
        log_event(
            logger,
            logging.INFO,
            "inventory_session_finished",
            location=key.location,
            month=key.month,
            year=key.year,
            session_id=finished.session_id,
            total_scans=finished.total_scans,
            counter_drift=finished.total_scans - current.total_scans,
            completed_by=user,
        )
        return finished

    def clear_agency_data_after_download(
        self,
        location: Any,
        month: Any,
        year: Any,
        session_id: str,
        *,
        backup: StoredFileRecord | None,
    ) -> int:
        """
        Remove a completed session's scans once its backup has been stored.

        Returns the number of scan rows removed. The summary row is untouched.
        """

        key = self._key(location, month, year)
        if (
            backup is None
            or backup.status is not FileStatus.ACTIVE
            or backup.location.lower() != key.location.lower()
            or (backup.month, backup.year) != (key.month, key.year)
        ):
            raise ConflictError("A stored backup for this inventory period is required before clearing.")

        summary = next((row for row in self._summaries_for(key, fresh=True) if row.session_id == session_id), None)
        if summary is None:
            raise NotFoundError(f"Inventory session {session_id} not found for {key}.")
        if summary.status is not SessionStatus.COMPLETED:
            raise ConflictError("Only completed inventory sessions can be cleared.")

        scans = self._load_scans(key.location, fresh=True)
        mine = [scan for scan in scans if scan.belongs_to(summary)]
        if not mine:
            return 0

        if len(mine) == len(scans):
            self._gateway.clear_sheet(key.location)
        else:
            for scan in sorted(mine, key=lambda item: item.row_number or 0, reverse=True):
                self._gateway.blank_row(key.location, scan.row_number, len(SCAN_HEADERS))

        log_event(
            logger,
            logging.INFO,
            "inventory_scans_cleared",
            location=key.location,
            session_id=session_id,
            rows=len(mine),
            backup_file_id=backup.file_id,
        )
        return len(mine)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get_monthly_inventory(
        self,
        location: Any,
        month: Any,
        year: Any,
        *,
        include_scans: bool = True,
    ) -> MonthlyInventory:
        """
        Return the period's current session (active, else latest) and its scans.
        """

        key = self._key(location, month, year)
        rows = self._summaries_for(key)
        summary = self._canonical_active(key, rows) or self._latest(rows)
        if summary is None:
            return MonthlyInventory(key=key, status=SessionStatus.NOT_STARTED, summary=None, sessions_this_month=0)
        scans = self._session_scans(summary) if include_scans else []
        return MonthlyInventory(
            key=key,
            status=summary.status,
            summary=summary,
            sessions_this_month=len(rows),
            scans=scans,
        )

    def check_monthly_inventory(self, location: Any, month: Any, year: Any) -> MonthlyInventory:
        return self.get_monthly_inventory(location, month, year, include_scans=False)

    def list_location_inventories(self, location: Any) -> list[MonthlySummaryRecord]:
        name = self._canonical_location(parse_location(location)).lower()
        rows = [row for row in self._load_summaries() if row.location.lower() == name]
        return sorted(rows, key=lambda row: (row.year, row.month, row.created_at), reverse=True)

    def get_scan_count(self, location: Any, month: Any, year: Any) -> int:
        return len(self.get_monthly_inventory(location, month, year).scans)

    def get_duplicate_identifiers(self, location: Any, month: Any, year: Any) -> dict[str, int]:
        scans = self.get_monthly_inventory(location, month, year).scans
        counts = Counter(scan.identifier.upper() for scan in scans)
        return {identifier: count for identifier, count in counts.items() if count > 1}

    def check_duplicate_identifier(self, location: Any, month: Any, year: Any, identifier: str) -> bool:
        wanted = identifier.strip().upper()
        scans = self.get_monthly_inventory(location, month, year).scans
        return any(scan.identifier.upper() == wanted for scan in scans)

    def get_session_snapshot(
        self,
        location: Any,
        month: Any,
        year: Any,
        session_id: str | None = None,
    ) -> InventorySnapshot:
        """
        Return the most recent completed session (or ``session_id``) with its scans.
        """

        key = self._key(location, month, year)
        completed = [row for row in self._summaries_for(key, fresh=True) if row.status is SessionStatus.COMPLETED]
        if session_id is not None:
            completed = [row for row in completed if row.session_id == session_id]
        if not completed:
            raise NotFoundError(f"No completed inventory session found for {key}.")
        summary = max(completed, key=lambda row: row.completed_at or row.created_at)
        return InventorySnapshot(summary=summary, scans=self._session_scans(summary, fresh=True))

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def cleanup_duplicate_rows(self) -> DuplicateCleanupResult:
        """
        Remove duplicate summary rows across every period.
        """

        return self._remove_duplicates(self._load_summaries(fresh=True))

    def cleanup_specific_duplicates(self, location: Any, month: Any, year: Any) -> DuplicateCleanupResult:
        key = self._key(location, month, year)
        return self._remove_duplicates(self._summaries_for(key, fresh=True))

    def validate_summary_structure(self) -> SummaryStructureReport:
        """
        Report malformed rows and duplicate active periods without modifying anything.
        """

        raw_rows = self._gateway.read_rows(self._summary_sheet, fresh=True)
        records, malformed = self._parse_summaries(raw_rows)
        active_keys = Counter(
            str(SessionKey(row.location.lower(), row.month, row.year))
            for row in records
            if row.status is SessionStatus.ACTIVE
        )
        return SummaryStructureReport(
            total_rows=len(raw_rows),
            valid_rows=len(records),
            malformed_rows=malformed,
            duplicate_active_keys=sorted(key for key, count in active_keys.items() if count > 1),
        )

    def _remove_duplicates(self, rows: list[MonthlySummaryRecord]) -> DuplicateCleanupResult:
        # Two completed sessions in one month are distinct; only rows sharing an
        # active period or a session id are duplicates.
        groups: dict[tuple[str, int, int, str, str], list[MonthlySummaryRecord]] = {}
        for row in rows:
            session_part = "" if row.status is SessionStatus.ACTIVE else row.session_id
            group_key = (row.location.lower(), row.month, row.year, row.status.value, session_part)
            groups.setdefault(group_key, []).append(row)

        groups_found = 0
        rows_removed = 0
        scans_reassigned = 0
        kept: list[str] = []
        for group in groups.values():
            if len(group) < 2:
                continue
            groups_found += 1
            ordered = sorted(group, key=lambda row: (row.created_at, row.row_number or 0))
            keeper, duplicates = ordered[0], ordered[1:]
            for duplicate in sorted(duplicates, key=lambda row: row.row_number or 0, reverse=True):
                if duplicate.session_id != keeper.session_id:
                    scans_reassigned += self._reassign_scans(keeper, duplicate.session_id)
                self._gateway.blank_row(self._summary_sheet, duplicate.row_number, len(SUMMARY_HEADERS))
                rows_removed += 1
            if keeper.status is SessionStatus.ACTIVE:
                recount = len(self._session_scans(keeper, fresh=True))
                self._gateway.update_row(
                    self._summary_sheet, keeper.row_number, keeper.with_total_scans(recount).to_row()
                )
            kept.append(keeper.session_id)
            logger.warning(
                "Duplicate summary rows removed key=%s kept=%s removed=%s",
                keeper.key,
                keeper.session_id,
                [row.session_id for row in duplicates],
            )

        return DuplicateCleanupResult(
            groups_found=groups_found,
            rows_removed=rows_removed,
            scans_reassigned=scans_reassigned,
            kept_session_ids=kept,
        )

    def _reassign_scans(self, keeper: MonthlySummaryRecord, old_session_id: str) -> int:
        moved = 0
        for scan in self._load_scans(keeper.location, fresh=True):
            if scan.session_id == old_session_id:
                updated = replace(scan, session_id=keeper.session_id)
                self._gateway.update_row(keeper.location, scan.row_number, updated.to_row())
                moved += 1
        return moved

    # -----------------------------------------------------------------------
    # Sheet access helpers
    # -----------------------------------------------------------------------

    def _key(self, location: Any, month: Any, year: Any) -> SessionKey:
        return SessionKey(
            location=self._canonical_location(parse_location(location)),
            month=parse_month(month),
            year=parse_year(year, now=self._clock()),
        )

    def _canonical_location(self, location: str) -> str:
        lowered = location.lower()
        for known in self._settings.locations:
            if known.lower() == lowered:
                return known
        return location

    def _ensure_summary_sheet(self) -> None:
        self._gateway.ensure_sheet(self._summary_sheet, SUMMARY_HEADERS)

    def _ensure_scan_sheet(self, location: str) -> None:
        self._gateway.ensure_sheet(location, SCAN_HEADERS)

    def _parse_summaries(self, raw_rows: list[SheetRow]) -> tuple[list[MonthlySummaryRecord], list[int]]:
        records: list[MonthlySummaryRecord] = []
        malformed: list[int] = []
        for row in raw_rows:
            try:
                records.append(MonthlySummaryRecord.from_row(row.values, row.row_number))
            except ValueError as exc:
                malformed.append(row.row_number)
                logger.warning("Skipping malformed summary row=%s error=%s", row.row_number, exc)
        return records, malformed

    def _load_summaries(self, *, fresh: bool = False) -> list[MonthlySummaryRecord]:
        self._ensure_summary_sheet()
        records, _ = self._parse_summaries(self._gateway.read_rows(self._summary_sheet, fresh=fresh))
        return records

    def _summaries_for(self, key: SessionKey, *, fresh: bool = False) -> list[MonthlySummaryRecord]:
        rows = [row for row in self._load_summaries(fresh=fresh) if row.matches(key)]
        return sorted(rows, key=lambda row: row.row_number or 0)

    def _canonical_active(
        self,
        key: SessionKey,
        rows: list[MonthlySummaryRecord],
    ) -> MonthlySummaryRecord | None:
        active = [row for row in rows if row.status is SessionStatus.ACTIVE]
        if not active:
            return None
        if len(active) > 1:
            logger.error(
                "Integrity violation: %s active summary rows key=%s session_ids=%s",
                len(active),
                key,
                [row.session_id for row in active],
            )
        return min(active, key=lambda row: row.row_number or 0)

    @staticmethod
    def _latest(rows: list[MonthlySummaryRecord]) -> MonthlySummaryRecord | None:
        if not rows:
            return None
        return max(rows, key=lambda row: (row.created_at, row.row_number or 0))

    def _load_scans(self, location: str, *, fresh: bool = False) -> list[ScanRecord]:
        self._ensure_scan_sheet(location)
        scans: list[ScanRecord] = []
        for row in self._gateway.read_rows(location, fresh=fresh):
            try:
                scans.append(ScanRecord.from_row(row.values, row.row_number))
            except ValueError as exc:
                logger.warning("Skipping malformed scan row sheet=%s row=%s error=%s", location, row.row_number, exc)
        return scans

    def _session_scans(self, summary: MonthlySummaryRecord, *, fresh: bool = False) -> list[ScanRecord]:
        return [scan for scan in self._load_scans(summary.location, fresh=fresh) if scan.belongs_to(summary)]


@lru_cache(maxsize=1)
def get_inventory_session_service() -> InventorySessionService:
    """
    Build and cache the session service over the shared gateway.
    """

    return InventorySessionService(
        get_spreadsheet_gateway(),
        settings=get_inventory_settings(),
        summary_sheet=get_spreadsheet_settings().summary_sheet_name,
    )
