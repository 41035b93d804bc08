"""
db/models/sheet_row.py

Row storage for the relational tabular backend.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class SheetRow(Base, TimestampMixin):
    """
    One positional row of a logical sheet. Row 1 holds the headers.
    """

    __tablename__ = "sheet_rows"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    sheet_name: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
    )
    row_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based position; row 1 is the header row",
    )
    cells: Mapped[list[Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=list,
        comment="Cell values serialized as strings in header order",
    )

    __table_args__ = (
        UniqueConstraint("sheet_name", "row_number", name="uq_sheet_rows_sheet_name_row_number"),
        Index("ix_sheet_rows_sheet_name", "sheet_name"),
    )
