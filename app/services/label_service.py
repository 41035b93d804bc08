"""
app/services/label_service.py

QR label pipeline: uploaded car data -> validated rows -> encoded payloads ->
printable label images -> zip archive.

Batch lifecycle
---------------
Uploaded -> Parsed -> Validated -> Generated -> Archived. The archive is kept
on disk for the grace window and then purged by the scheduler. Failures abort
the request before anything is written.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import os
import re
import uuid
import zipfile
from dataclasses import replace
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Iterable

import qrcode
from PIL import Image, ImageDraw, ImageFont

from app.config import LabelSettings, get_label_settings
from app.domain.errors import FieldError, ValidationError
from app.domain.inventory import CarDataRow, format_timestamp, parse_timestamp
from app.domain.labels import LABEL_TYPE, EncodedLabel, GeneratedLabel, LabelBatch
from app.logging_utils import log_event
from app.services.label_archive_store import LabelArchiveStore
from app.validators.inventory_validator import CAR_DATA_FIELDS, is_valid_serie, parse_car_data, parse_location

logger = logging.getLogger(__name__)

# 5x5 cm at 300 DPI.
LABEL_CANVAS_PX = 590
LABEL_DPI = 300
QR_SIZE_PX = 495
QR_TOP_MARGIN_PX = 10
TEXT_SIDE_MARGIN_PX = 12
SERIE_FONT_SIZE = 26
DETAIL_FONT_SIZE = 18
LINE_GAP_PX = 4

MANIFEST_FILENAME = "QR_Codes_Info.txt"
COLUMN_ALIASES = {"ubicaciones": "ubicacion"}
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

FONT_CANDIDATES = [
    ("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
    (
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    ),
    ("/System/Library/Fonts/Supplemental/Arial.ttf", "/System/Library/Fonts/Supplemental/Arial Bold.ttf"),
    ("C:/Windows/Fonts/arial.ttf", "C:/Windows/Fonts/arialbd.ttf"),
]

_font_cache: dict[tuple[int, bool], ImageFont.ImageFont] = {}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_tabular_upload(content: bytes) -> list[CarDataRow]:
    """
    Parse delimited car data with columns serie, marca, color, ubicacion.

    Column names match case-insensitively. Blank lines are skipped; every
    invalid row is reported with its 1-based line number (header is line 1).
    """

    if not content or not content.strip():
        raise ValidationError.for_field("file", "The uploaded file is empty.")
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError.for_field("file", "The uploaded file must be UTF-8 encoded.") from exc

    first_line = text.splitlines()[0] if text.splitlines() else ""
    try:
        dialect = csv.Sniffer().sniff(first_line, delimiters=",;\t")
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    if not reader.fieldnames:
        raise ValidationError.for_field("file", "The uploaded file has no header row.")

    header_map: dict[str, str] = {}
    for header in reader.fieldnames:
        if header is None:
            continue
        normalized = header.strip().lower()
        normalized = COLUMN_ALIASES.get(normalized, normalized)
        header_map.setdefault(normalized, header)

    missing = [name for name in CAR_DATA_FIELDS if name not in header_map]
    if missing:
        message = f"Missing required columns: {', '.join(missing)}."
        raise ValidationError(message, [FieldError(field=name, message=message) for name in missing])

    rows: list[CarDataRow] = []
    errors: list[FieldError] = []
    for raw_row in reader:
        row_number = reader.line_num
        if not any(isinstance(value, str) and value.strip() for value in raw_row.values()):
            continue
        values = {name: (raw_row.get(header_map[name]) or "").strip() for name in CAR_DATA_FIELDS}
        try:
            rows.append(parse_car_data(values, row_number=row_number))
        except ValidationError as exc:
            errors.extend(exc.errors)

    if errors:
        details = "; ".join(f"Row {error.row_number}: {error.message}" for error in errors[:10])
        raise ValidationError(f"{len(errors)} row error(s) in upload. {details}", errors)
    if not rows:
        raise ValidationError.for_field("file", "The uploaded file has no data rows.")
    return rows


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


def encode_label(row: CarDataRow, location: str, *, now: datetime | None = None) -> EncodedLabel:
    return EncodedLabel(car=row, location=location, generated_at=now or _utcnow())


def decode_label(payload: Any) -> EncodedLabel:
    """
    Parse a scanned payload. Rejects foreign or malformed codes with ValidationError.
    """

    if not isinstance(payload, str) or not payload.strip():
        raise ValidationError.for_field("payload", "Scanned code is empty.")
    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise ValidationError.for_field("payload", "Scanned code is not a valid inventory label.") from exc
    if not isinstance(data, dict):
        raise ValidationError.for_field("payload", "Scanned code is not a valid inventory label.")
    if data.get("type") != LABEL_TYPE:
        raise ValidationError.for_field("type", "Scanned code is not a car inventory label.")

    if "ubicacion" not in data and "ubicaciones" in data:
        data["ubicacion"] = data["ubicaciones"]
    required = (*CAR_DATA_FIELDS, "location", "timestamp")
    missing = [name for name in required if not isinstance(data.get(name), str) or not data[name].strip()]
    if missing:
        message = f"Scanned label is missing: {', '.join(missing)}."
        raise ValidationError(message, [FieldError(field=name, message=message) for name in missing])
    if not is_valid_serie(data["serie"]):
        raise ValidationError.for_field("serie", "Scanned label has an invalid serie.")
    try:
        generated_at = parse_timestamp(data["timestamp"])
    except ValueError as exc:
        raise ValidationError.for_field("timestamp", "Scanned label has an invalid timestamp.") from exc

    return EncodedLabel(
        car=CarDataRow(
            serie=data["serie"].strip(),
            marca=data["marca"].strip(),
            color=data["color"].strip(),
            ubicacion=data["ubicacion"].strip(),
        ),
        location=data["location"].strip(),
        generated_at=generated_at,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _load_font(size: int, bold: bool = False) -> ImageFont.ImageFont:
    cache_key = (size, bold)
    if cache_key in _font_cache:
        return _font_cache[cache_key]

    for regular_path, bold_path in FONT_CANDIDATES:
        path = bold_path if bold else regular_path
        if path and os.path.exists(path):
            try:
                font = ImageFont.truetype(path, size=size)
                _font_cache[cache_key] = font
                return font
            except OSError:
                continue

    font = ImageFont.load_default()
    _font_cache[cache_key] = font
    return font


def _fit_text(draw: ImageDraw.ImageDraw, text: str, font: ImageFont.ImageFont, max_width: int) -> str:
    if draw.textlength(text, font=font) <= max_width:
        return text
    trimmed = text
    while trimmed and draw.textlength(trimmed + "...", font=font) > max_width:
        trimmed = trimmed[:-1]
    return trimmed + "..."


def render_label_image(payload: str, car: CarDataRow) -> bytes:
    """
    Render a 590x590 px PNG label: code on top, serie / marca - color / ubicacion below.
    """

    canvas = Image.new("RGB", (LABEL_CANVAS_PX, LABEL_CANVAS_PX), "white")

    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    code_image = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
    code_image = code_image.resize((QR_SIZE_PX, QR_SIZE_PX), Image.Resampling.NEAREST)
    canvas.paste(code_image, ((LABEL_CANVAS_PX - QR_SIZE_PX) // 2, QR_TOP_MARGIN_PX))

    draw = ImageDraw.Draw(canvas)
    lines = (
        (car.serie, _load_font(SERIE_FONT_SIZE, bold=True)),
        (f"{car.marca} - {car.color}", _load_font(DETAIL_FONT_SIZE, bold=True)),
        (car.ubicacion, _load_font(DETAIL_FONT_SIZE)),
    )
    max_width = LABEL_CANVAS_PX - 2 * TEXT_SIDE_MARGIN_PX
    y = QR_TOP_MARGIN_PX + QR_SIZE_PX + LINE_GAP_PX
    for text, font in lines:
        fitted = _fit_text(draw, text, font, max_width)
        left, top, right, bottom = draw.textbbox((0, 0), fitted, font=font)
        x = (LABEL_CANVAS_PX - (right - left)) // 2 - left
        draw.text((x, y - top), fitted, fill="black", font=font)
        y += (bottom - top) + LINE_GAP_PX

    buffer = io.BytesIO()
    canvas.save(buffer, format="PNG", dpi=(LABEL_DPI, LABEL_DPI))
    return buffer.getvalue()


def label_filename(row: CarDataRow, index: int) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", f"QR_{row.serie}_{row.marca}_{index}.png")


def build_manifest(batch: LabelBatch) -> str:
    lines = [
        "CAR INVENTORY QR CODES",
        "======================",
        f"Location: {batch.location}",
        f"Generated by: {batch.generated_by_name} ({batch.generated_by})",
        f"Generated at: {format_timestamp(batch.generated_at)}",
        f"Session ID: {batch.session_id}",
        f"Total codes: {len(batch.images)}",
        f"Label size: 5x5 cm ({LABEL_CANVAS_PX}x{LABEL_CANVAS_PX} px at {LABEL_DPI} DPI)",
        "",
    ]
    for index, image in enumerate(batch.images, start=1):
        car = image.label.car
        lines.extend(
            [
                f"{index}. {image.filename}",
                f"   Serie: {car.serie}",
                f"   Marca: {car.marca}",
                f"   Color: {car.color}",
                f"   Ubicacion: {car.ubicacion}",
                "",
            ]
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class LabelService:
    """
    Generates label batches and serves their archives.
    """

    def __init__(
        self,
        archive_store: LabelArchiveStore,
        *,
        settings: LabelSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._archive_store = archive_store
        self._settings = settings or LabelSettings()
        self._clock = clock

    def generate_batch(
        self,
        rows: Iterable[CarDataRow],
        location: str,
        user: str,
        user_name: str,
    ) -> LabelBatch:
        location = parse_location(location)
        generated_at = self._clock()
        images: list[GeneratedLabel] = []
        for index, row in enumerate(rows, start=1):
            label = encode_label(row, location, now=generated_at)
            images.append(
                GeneratedLabel(
                    filename=label_filename(row, index),
                    content=render_label_image(label.to_payload(), row),
                    label=label,
                )
            )
        if not images:
            raise ValidationError.for_field("rows", "No car data rows to generate labels for.")

        batch = LabelBatch(
            session_id=f"qr_{uuid.uuid4().hex}",
            location=location,
            generated_by=user,
            generated_by_name=user_name,
            generated_at=generated_at,
            images=images,
        )
        return replace(batch, manifest_text=build_manifest(batch))

    @staticmethod
    def package_archive(batch: LabelBatch) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            for image in batch.images:
                archive.writestr(image.filename, image.content)
            archive.writestr(MANIFEST_FILENAME, batch.manifest_text)
        return buffer.getvalue()

    def create_label_archive(
        self,
        content: bytes,
        *,
        location: str,
        user: str,
        user_name: str,
    ) -> LabelBatch:
        """
        Run the whole pipeline for one upload and keep the archive for retrieval.
        """

        if len(content) > self._settings.max_upload_bytes:
            raise ValidationError.for_field("file", "The uploaded file is too large.")
        rows = parse_tabular_upload(content)
        batch = self.generate_batch(rows, location, user, user_name)
        self._archive_store.save(batch.session_id, self.package_archive(batch))
        log_event(
            logger,
            logging.INFO,
            "label_batch_generated",
            session_id=batch.session_id,
            location=batch.location,
            labels=len(batch.images),
            generated_by=user,
        )
        return batch

    def get_archive(self, session_id: str) -> bytes:
        return self._archive_store.load(session_id)

    def purge_archives(self) -> int:
        return self._archive_store.purge_older_than(self._settings.archive_grace_minutes * 60)


@lru_cache(maxsize=1)
def get_label_service() -> LabelService:
    settings = get_label_settings()
    return LabelService(LabelArchiveStore(settings.archive_dir), settings=settings)
