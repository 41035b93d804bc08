"""
tests/test_label_service.py

Pytest unit tests for the QR label pipeline.

Coverage
--------
- Upload parsing: delimiters, header aliases, per-row errors with row numbers
- Payload encode/decode and rejection of foreign codes
- Label image dimensions
- Archive contents, retrieval and purge
"""

from __future__ import annotations

import io
import json
import os
import time
import zipfile
from datetime import datetime, timezone

import pytest
from PIL import Image, ImageOps

from app.domain.errors import NotFoundError, ValidationError
from app.domain.inventory import CarDataRow
from app.services.label_archive_store import LabelArchiveStore
from app.services.label_service import (
    LABEL_CANVAS_PX,
    MANIFEST_FILENAME,
    QR_SIZE_PX,
    QR_TOP_MARGIN_PX,
    LabelService,
    decode_label,
    encode_label,
    label_filename,
    parse_tabular_upload,
    render_label_image,
)

VALID_SERIE = "1HGBH41JXMN109186"
USER = "ana.lopez@example.com"


def _car(serie: str = VALID_SERIE) -> CarDataRow:
    return CarDataRow(serie=serie, marca="Suzuki", color="Rojo", ubicacion="Patio A")


# ---------------------------------------------------------------------------
# Upload parsing
# ---------------------------------------------------------------------------


class TestParseTabularUpload:
    def test_parses_comma_separated_rows(self) -> None:
        content = f"serie,marca,color,ubicacion\n{VALID_SERIE},Suzuki,Rojo,Patio A\n".encode()

        rows = parse_tabular_upload(content)

        assert rows == [_car()]

    def test_accepts_semicolons_alias_header_and_bom(self) -> None:
        content = f"\ufeffSerie;Marca;Color;Ubicaciones\n\n1hGbH41jXmN109186;Audi;Negro;Bodega\n".encode()

        rows = parse_tabular_upload(content)

        assert len(rows) == 1
        assert rows[0].serie == "1hGbH41jXmN109186"
        assert rows[0].ubicacion == "Bodega"

    def test_short_serie_is_reported_with_row_number(self) -> None:
        content = (
            "serie,marca,color,ubicacion\n"
            f"{VALID_SERIE},Suzuki,Rojo,Patio A\n"
            "1HGBH41JXMN10918,Suzuki,Azul,Patio B\n"
        ).encode()

        with pytest.raises(ValidationError) as ctx:
            parse_tabular_upload(content)

        assert [(error.field, error.row_number) for error in ctx.value.errors] == [("serie", 3)]

    def test_row_numbers_count_blank_lines(self) -> None:
        content = (
            "serie,marca,color,ubicacion\n"
            f"{VALID_SERIE},Suzuki,Rojo,Patio A\n"
            "\n"
            "SHORT,Suzuki,Azul,Patio B\n"
        ).encode()

        with pytest.raises(ValidationError) as ctx:
            parse_tabular_upload(content)

        assert [error.row_number for error in ctx.value.errors] == [4]
        assert "Row 4:" in ctx.value.message

    def test_missing_values_are_listed(self) -> None:
        content = f"serie,marca,color,ubicacion\n{VALID_SERIE},,Rojo,\n".encode()

        with pytest.raises(ValidationError) as ctx:
            parse_tabular_upload(content)

        assert ctx.value.errors[0].field == "marca,ubicacion"
        assert ctx.value.errors[0].row_number == 2

    def test_missing_column_is_rejected(self) -> None:
        with pytest.raises(ValidationError) as ctx:
            parse_tabular_upload(b"serie,marca,color\nX,Y,Z\n")

        assert [error.field for error in ctx.value.errors] == ["ubicacion"]

    @pytest.mark.parametrize("content", [b"", b"   \n", b"serie,marca,color,ubicacion\n"])
    def test_empty_uploads_are_rejected(self, content: bytes) -> None:
        with pytest.raises(ValidationError):
            parse_tabular_upload(content)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class TestLabelPayloads:
    def test_encode_then_decode_preserves_fields(self) -> None:
        generated_at = datetime(2025, 8, 5, 15, 30, tzinfo=timezone.utc)
        label = encode_label(_car(), "Bodega Coyote", now=generated_at)

        decoded = decode_label(label.to_payload())

        assert decoded == label
        assert json.loads(label.to_payload())["type"] == "car_inventory"

    def test_decode_accepts_legacy_ubicaciones_key(self) -> None:
        payload = json.dumps(
            {
                "serie": VALID_SERIE,
                "marca": "Suzuki",
                "color": "Rojo",
                "ubicaciones": "Patio A",
                "location": "Suzuki",
                "timestamp": "2025-08-05T15:30:00Z",
                "type": "car_inventory",
            }
        )

        assert decode_label(payload).car.ubicacion == "Patio A"

    @pytest.mark.parametrize(
        "payload",
        [
            "",
            "ABC12345",
            "[1, 2]",
            json.dumps({"type": "wifi", "serie": VALID_SERIE}),
        ],
    )
    def test_foreign_codes_are_rejected(self, payload: str) -> None:
        with pytest.raises(ValidationError):
            decode_label(payload)

    def test_label_missing_fields_is_rejected(self) -> None:
        payload = json.dumps({"type": "car_inventory", "serie": VALID_SERIE})

        with pytest.raises(ValidationError) as ctx:
            decode_label(payload)

        assert {error.field for error in ctx.value.errors} >= {"marca", "location", "timestamp"}

    def test_label_filename_is_sanitized(self) -> None:
        car = CarDataRow(serie=VALID_SERIE, marca="Alfa Romeo", color="Gris", ubicacion="Piso 2")

        assert label_filename(car, 3) == f"QR_{VALID_SERIE}_Alfa_Romeo_3.png"


# ---------------------------------------------------------------------------
# Rendering and archives
# ---------------------------------------------------------------------------


class TestRendering:
    def test_label_image_is_square_png(self) -> None:
        long_place = "Bodega principal, pasillo norte, estante numero cuarenta y dos"
        car = CarDataRow(serie=VALID_SERIE, marca="Suzuki", color="Rojo", ubicacion=long_place)

        content = render_label_image(encode_label(car, "Suzuki").to_payload(), car)

        image = Image.open(io.BytesIO(content))
        assert image.format == "PNG"
        assert image.size == (LABEL_CANVAS_PX, LABEL_CANVAS_PX)

    def test_code_fills_print_area_and_text_stays_on_canvas(self) -> None:
        car = _car()
        image = Image.open(io.BytesIO(render_label_image(encode_label(car, "Suzuki").to_payload(), car)))
        ink = ImageOps.invert(image.convert("L"))

        code_left, code_top, code_right, _ = ink.crop(
            (0, 0, LABEL_CANVAS_PX, QR_TOP_MARGIN_PX + QR_SIZE_PX)
        ).getbbox()
        _, _, _, ink_bottom = ink.getbbox()

        assert QR_SIZE_PX == 495
        assert code_left >= (LABEL_CANVAS_PX - QR_SIZE_PX) // 2
        assert code_right - code_left > 0.9 * QR_SIZE_PX
        assert code_top >= QR_TOP_MARGIN_PX
        assert ink_bottom < LABEL_CANVAS_PX


class TestLabelArchives:
    def test_single_row_archive_has_one_png_and_manifest(self, label_service: LabelService) -> None:
        content = f"serie,marca,color,ubicacion\n{VALID_SERIE},Suzuki,Rojo,Patio A\n".encode()

        batch = label_service.create_label_archive(content, location="Bodega Coyote", user=USER, user_name="Ana")
        archive = zipfile.ZipFile(io.BytesIO(label_service.get_archive(batch.session_id)))

        names = archive.namelist()
        assert sorted(names) == sorted([f"QR_{VALID_SERIE}_Suzuki_1.png", MANIFEST_FILENAME])
        manifest = archive.read(MANIFEST_FILENAME).decode()
        assert "Location: Bodega Coyote" in manifest
        assert f"Serie: {VALID_SERIE}" in manifest
        assert batch.archive_filename == f"{batch.session_id}.zip"

    def test_invalid_upload_writes_nothing(self, label_service: LabelService, tmp_path) -> None:
        with pytest.raises(ValidationError):
            label_service.create_label_archive(
                b"serie,marca,color,ubicacion\nSHORT,Suzuki,Rojo,Patio\n",
                location="Suzuki",
                user=USER,
                user_name="Ana",
            )

        assert not (tmp_path / "archives").exists()

    def test_unknown_archive_is_not_found(self, label_service: LabelService) -> None:
        with pytest.raises(NotFoundError):
            label_service.get_archive("qr_" + "0" * 32)

    def test_malformed_session_id_is_rejected(self, label_service: LabelService) -> None:
        with pytest.raises(ValidationError):
            label_service.get_archive("../etc/passwd")

    def test_purge_removes_only_stale_archives(self, tmp_path) -> None:
        store = LabelArchiveStore(tmp_path)
        stale = store.save("qr_" + "a" * 32, b"old")
        store.save("qr_" + "b" * 32, b"new")
        two_hours_ago = time.time() - 7200
        os.utime(stale, (two_hours_ago, two_hours_ago))

        removed = store.purge_older_than(3600)

        assert removed == 1
        assert sorted(path.name for path in tmp_path.glob("*.zip")) == ["qr_" + "b" * 32 + ".zip"]
