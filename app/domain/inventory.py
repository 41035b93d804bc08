"""
app/domain/inventory.py

Typed inventory records and their string-row serialization.

The tabular backends have no native numeric or date types, so every record
crosses the storage boundary through ``to_row()`` / ``from_row()`` which
write and read plain strings in the documented header order.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Sequence

from app.domain.errors import ConflictError

MONTH_NAMES: tuple[str, ...] = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

SUMMARY_HEADERS: tuple[str, ...] = (
    "Location",
    "Month",
    "Year",
    "Status",
    "Created At",
    "Created By",
    "User Name",
    "Total Scans",
    "Session ID",
    "Completed At",
    "Completed By",
)

SCAN_HEADERS: tuple[str, ...] = (
    "Date",
    "Identifier",
    "Scanned By",
    "Serie",
    "Marca",
    "Color",
    "Ubicacion",
    "Session ID",
)


def month_name(month: int) -> str:
    return MONTH_NAMES[month - 1]


def month_from_name(value: str) -> int:
    """
    Resolve a stored month cell ("August", "Aug", "08", "8") to 1..12.
    """

    cleaned = value.strip()
    if cleaned.isdigit():
        number = int(cleaned)
        if 1 <= number <= 12:
            return number
        raise ValueError(f"Month out of range: {value!r}")
    lowered = cleaned.lower()
    for index, name in enumerate(MONTH_NAMES, start=1):
        if lowered in {name.lower(), name[:3].lower()}:
            return index
    raise ValueError(f"Unrecognized month: {value!r}")


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime | None:
    cleaned = value.strip()
    if not cleaned:
        return None
    normalized = cleaned[:-1] + "+00:00" if cleaned.endswith("Z") else cleaned
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_scan_date(value: date) -> str:
    """Display form used in scan sheets, e.g. ``Aug 5, 2025``."""
    return f"{MONTH_NAMES[value.month - 1][:3]} {value.day}, {value.year}"


def parse_scan_date(value: str) -> date | None:
    cleaned = value.strip().replace(",", " ")
    parts = cleaned.split()
    if len(parts) == 3:
        try:
            return date(int(parts[2]), month_from_name(parts[0]), int(parts[1]))
        except ValueError:
            return None
    try:
        return date.fromisoformat(cleaned[:10])
    except ValueError:
        return None


def _cell(values: Sequence[str], index: int) -> str:
    if index < len(values):
        return str(values[index]).strip()
    return ""


def _parse_count(value: str) -> int:
    try:
        return max(0, int(float(value))) if value else 0
    except ValueError:
        return 0


# ---------------------------------------------------------------------------
# Session status state machine
# ---------------------------------------------------------------------------


class SessionStatus(str, Enum):
    NOT_STARTED = "Not Started"
    ACTIVE = "Active"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, value: str) -> SessionStatus:
        normalized = value.strip().lower().replace("_", " ")
        for status in cls:
            if status.value.lower() == normalized:
                return status
        raise ValueError(f"Unknown session status: {value!r}")

    def can_transition_to(self, target: SessionStatus) -> bool:
        return (self, target) in _ALLOWED_TRANSITIONS


_ALLOWED_TRANSITIONS: frozenset[tuple[SessionStatus, SessionStatus]] = frozenset(
    {
        (SessionStatus.NOT_STARTED, SessionStatus.ACTIVE),
        (SessionStatus.ACTIVE, SessionStatus.COMPLETED),
    }
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionKey:
    location: str
    month: int
    year: int

    def __str__(self) -> str:
        return f"{self.location}/{self.month:02d}/{self.year}"


@dataclass(frozen=True)
class CarDataRow:
    """
    Vehicle attributes carried by a generated label or a label scan.
    """

    serie: str
    marca: str
    color: str
    ubicacion: str


@dataclass(frozen=True)
class MonthlySummaryRecord:
    """
    One monthly inventory session for a location.

    ``row_number`` is the record's position in the summary sheet and is not
    serialized.
    """

    location: str
    month: int
    year: int
    status: SessionStatus
    created_at: datetime
    created_by: str
    user_name: str
    total_scans: int
    session_id: str
    completed_at: datetime | None = None
    completed_by: str | None = None
    row_number: int | None = None

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.location, self.month, self.year)

    def matches(self, key: SessionKey) -> bool:
        return (
            self.location.strip().lower() == key.location.strip().lower()
            and self.month == key.month
            and self.year == key.year
        )

    def with_total_scans(self, total_scans: int) -> MonthlySummaryRecord:
        return replace(self, total_scans=max(0, total_scans))

    def completed(self, *, at: datetime, by: str, total_scans: int) -> MonthlySummaryRecord:
        if not self.status.can_transition_to(SessionStatus.COMPLETED):
            raise ConflictError(
                f"Session {self.session_id} cannot move from {self.status.value} to Completed.",
                already_completed=self.status is SessionStatus.COMPLETED,
            )
        return replace(
            self,
            status=SessionStatus.COMPLETED,
            completed_at=at,
            completed_by=by,
            total_scans=max(0, total_scans),
        )

    def to_row(self) -> list[str]:
        return [
            self.location,
            month_name(self.month),
            str(self.year),
            self.status.value,
            format_timestamp(self.created_at),
            self.created_by,
            self.user_name,
            str(self.total_scans),
            self.session_id,
            format_timestamp(self.completed_at),
            self.completed_by or "",
        ]

    @classmethod
    def from_row(cls, values: Sequence[str], row_number: int | None = None) -> MonthlySummaryRecord:
        """
        Build a record from a summary sheet row. Raises ValueError on malformed rows.
        """

        location = _cell(values, 0)
        session_id = _cell(values, 8)
        if not location or not session_id:
            raise ValueError("Summary row is missing location or session id.")
        created_at = parse_timestamp(_cell(values, 4))
        if created_at is None:
            raise ValueError(f"Summary row {session_id} has no creation timestamp.")
        return cls(
            location=location,
            month=month_from_name(_cell(values, 1)),
            year=int(_cell(values, 2)),
            status=SessionStatus.parse(_cell(values, 3)),
            created_at=created_at,
            created_by=_cell(values, 5),
            user_name=_cell(values, 6),
            total_scans=_parse_count(_cell(values, 7)),
            session_id=session_id,
            completed_at=parse_timestamp(_cell(values, 9)),
            completed_by=_cell(values, 10) or None,
            row_number=row_number,
        )


@dataclass(frozen=True)
class ScanRecord:
    """
    One scanned item in a location scan sheet.
    """

    scanned_on: date
    identifier: str
    scanned_by: str
    session_id: str = ""
    car_data: CarDataRow | None = None
    row_number: int | None = None

    def belongs_to(self, summary: MonthlySummaryRecord) -> bool:
        if self.session_id:
            return self.session_id == summary.session_id
        return self.scanned_on.month == summary.month and self.scanned_on.year == summary.year

    def to_row(self) -> list[str]:
        car = self.car_data
        return [
            format_scan_date(self.scanned_on),
            self.identifier,
            self.scanned_by,
            car.serie if car else "",
            car.marca if car else "",
            car.color if car else "",
            car.ubicacion if car else "",
            self.session_id,
        ]

    @classmethod
    def from_row(cls, values: Sequence[str], row_number: int | None = None) -> ScanRecord:
        identifier = _cell(values, 1)
        scanned_on = parse_scan_date(_cell(values, 0))
        if not identifier or scanned_on is None:
            raise ValueError("Scan row is missing its identifier or date.")
        car_fields = [_cell(values, index) for index in range(3, 7)]
        return cls(
            scanned_on=scanned_on,
            identifier=identifier,
            scanned_by=_cell(values, 2),
            session_id=_cell(values, 7),
            car_data=CarDataRow(*car_fields) if any(car_fields) else None,
            row_number=row_number,
        )


@dataclass(frozen=True)
class ScanInput:
    """
    A validated scan request, normalized and ready for the session service.
    """

    location: str
    month: int
    year: int
    identifier: str
    user: str
    user_name: str
    car_data: CarDataRow | None = None

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.location, self.month, self.year)
