"""
app/domain/labels.py

Label payloads and generated batches for the QR pipeline.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime

from app.domain.inventory import CarDataRow, format_timestamp

LABEL_TYPE = "car_inventory"


@dataclass(frozen=True)
class EncodedLabel:
    """
    Data embedded in a generated code.
    """

    car: CarDataRow
    location: str
    generated_at: datetime
    type: str = LABEL_TYPE

    def to_payload(self) -> str:
        return json.dumps(
            {
                "serie": self.car.serie,
                "marca": self.car.marca,
                "color": self.car.color,
                "ubicacion": self.car.ubicacion,
                "location": self.location,
                "timestamp": format_timestamp(self.generated_at),
                "type": self.type,
            },
            ensure_ascii=False,
            separators=(",", ":"),
        )


@dataclass(frozen=True)
class GeneratedLabel:
    filename: str
    content: bytes
    label: EncodedLabel


@dataclass(frozen=True)
class LabelBatch:
    session_id: str
    location: str
    generated_by: str
    generated_by_name: str
    generated_at: datetime
    images: list[GeneratedLabel] = field(default_factory=list)
    manifest_text: str = ""

    @property
    def archive_filename(self) -> str:
        return f"{self.session_id}.zip"
