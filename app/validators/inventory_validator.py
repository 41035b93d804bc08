"""
app/validators/inventory_validator.py

Shape checks for identifiers, periods, emails, locations and scan requests.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Mapping

from app.domain.errors import FieldError, ValidationError
from app.domain.inventory import CarDataRow, ScanInput, month_from_name

BARCODE_PATTERN = re.compile(r"^[A-Z0-9]{8}$", re.IGNORECASE)
SERIE_PATTERN = re.compile(r"^[A-Z0-9]{17}$", re.IGNORECASE)
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MONTH_PATTERN = re.compile(r"^(0?[1-9]|1[0-2])$")

MIN_YEAR = 2020
CAR_DATA_FIELDS: tuple[str, ...] = ("serie", "marca", "color", "ubicacion")
RESERVED_SHEET_NAMES = {"monthlysummary", "filestorage"}
_FORBIDDEN_LOCATION_CHARS = set("!'[]*?/\\:")


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def is_valid_barcode(value: str) -> bool:
    return bool(BARCODE_PATTERN.match(value.strip()))


def is_valid_serie(value: str) -> bool:
    return bool(SERIE_PATTERN.match(value.strip()))


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def is_valid_identifier(value: str) -> bool:
    """
    An identifier is either an 8-character barcode or a 17-character serial.
    """

    return is_valid_barcode(value) or is_valid_serie(value)


def parse_month(value: Any) -> int:
    """
    Accept 8, "8", "08" or an English month name. Raises ValidationError.
    """

    if isinstance(value, bool) or _is_blank(value):
        raise ValidationError.for_field("month", "Month is required.")
    if isinstance(value, int):
        if 1 <= value <= 12:
            return value
        raise ValidationError.for_field("month", "Month must be between 01 and 12.")
    text = str(value).strip()
    if text.isdigit():
        if MONTH_PATTERN.match(text):
            return int(text)
        raise ValidationError.for_field("month", "Month must be between 01 and 12.")
    try:
        return month_from_name(text)
    except ValueError as exc:
        raise ValidationError.for_field("month", f"Unrecognized month: {text}.") from exc


def parse_year(value: Any, *, now: datetime | None = None) -> int:
    """
    Accept years from 2020 through next year. Raises ValidationError.
    """

    if isinstance(value, bool) or _is_blank(value):
        raise ValidationError.for_field("year", "Year is required.")
    try:
        year = int(str(value).strip())
    except ValueError as exc:
        raise ValidationError.for_field("year", "Year must be a number.") from exc
    current_year = (now or datetime.now(timezone.utc)).year
    if year < MIN_YEAR or year > current_year + 1:
        raise ValidationError.for_field(
            "year",
            f"Year must be between {MIN_YEAR} and {current_year + 1}.",
        )
    return year


def parse_location(value: Any) -> str:
    """
    A location names a scan sheet, so it must be non-empty and sheet-safe.
    """

    if _is_blank(value):
        raise ValidationError.for_field("location", "Location is required.")
    location = " ".join(str(value).split())
    if location.lower().replace(" ", "") in RESERVED_SHEET_NAMES:
        raise ValidationError.for_field("location", f"'{location}' is a reserved sheet name.")
    if any(char in _FORBIDDEN_LOCATION_CHARS for char in location) or len(location) > 100:
        raise ValidationError.for_field("location", "Location contains unsupported characters.")
    return location


def parse_car_data(data: Mapping[str, Any], *, row_number: int | None = None) -> CarDataRow:
    """
    Validate the four vehicle fields. Raises ValidationError listing every problem.
    """

    errors = _car_data_errors(data, row_number=row_number)
    if errors:
        prefix = f"Row {row_number}: " if row_number is not None else ""
        raise ValidationError(prefix + "; ".join(error.message for error in errors), errors)
    return CarDataRow(
        serie=str(data["serie"]).strip(),
        marca=str(data["marca"]).strip(),
        color=str(data["color"]).strip(),
        ubicacion=str(data["ubicacion"]).strip(),
    )


def _car_data_errors(data: Mapping[str, Any], *, row_number: int | None) -> list[FieldError]:
    errors: list[FieldError] = []
    missing = [name for name in CAR_DATA_FIELDS if _is_blank(data.get(name))]
    if missing:
        errors.append(
            FieldError(
                field=",".join(missing),
                message=f"Missing data for: {', '.join(missing)}.",
                row_number=row_number,
            )
        )
    serie = data.get("serie")
    if not _is_blank(serie) and not is_valid_serie(str(serie)):
        errors.append(
            FieldError(
                field="serie",
                message="Serie must be exactly 17 alphanumeric characters.",
                row_number=row_number,
            )
        )
    return errors


def validate_scan_input(
    *,
    location: Any,
    identifier: Any,
    user: Any,
    user_name: Any,
    month: Any = None,
    year: Any = None,
    car_data: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> ScanInput:
    """
    Validate a scan request and return its normalized form.

    Month and year default to the current UTC period. When car data is
    present the identifier defaults to the serial and must match it.
    """

    current = now or datetime.now(timezone.utc)
    errors: list[FieldError] = []

    def collect(parse, *args, **kwargs):
        try:
            return parse(*args, **kwargs)
        except ValidationError as exc:
            errors.extend(exc.errors)
            return None

    parsed_location = collect(parse_location, location)
    parsed_month = current.month if _is_blank(month) else collect(parse_month, month)
    parsed_year = current.year if _is_blank(year) else collect(parse_year, year, now=current)
    parsed_car = collect(parse_car_data, car_data) if car_data is not None else None

    if _is_blank(user):
        errors.append(FieldError(field="user", message="User is required."))
    elif not is_valid_email(str(user)):
        errors.append(FieldError(field="user", message="User must be a valid email address."))
    if _is_blank(user_name):
        errors.append(FieldError(field="user_name", message="User name is required."))

    code = "" if _is_blank(identifier) else str(identifier).strip().upper()
    if not code and parsed_car is not None:
        code = parsed_car.serie.upper()
    if not code:
        if car_data is None:
            errors.append(FieldError(field="identifier", message="Identifier or serial is required."))
    elif not is_valid_identifier(code):
        errors.append(
            FieldError(
                field="identifier",
                message="Identifier must be an 8-character barcode or a 17-character serial.",
            )
        )
    elif parsed_car is not None and code != parsed_car.serie.upper():
        errors.append(FieldError(field="identifier", message="Identifier does not match the serial."))

    if errors:
        raise ValidationError("; ".join(error.message for error in errors), errors)

    return ScanInput(
        location=parsed_location,
        month=parsed_month,
        year=parsed_year,
        identifier=code,
        user=str(user).strip(),
        user_name=str(user_name).strip(),
        car_data=parsed_car,
    )
