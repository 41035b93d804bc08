"""create sheet_rows table

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16 09:30:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "sheet_rows",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("sheet_name", sa.String(length=128), nullable=False),
        sa.Column(
            "row_number",
            sa.Integer(),
            nullable=False,
            comment="1-based position; row 1 is the header row",
        ),
        sa.Column(
            "cells",
            sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"),
            nullable=False,
            comment="Cell values serialized as strings in header order",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_sheet_rows"),
        sa.UniqueConstraint("sheet_name", "row_number", name="uq_sheet_rows_sheet_name_row_number"),
    )
    op.create_index("ix_sheet_rows_sheet_name", "sheet_rows", ["sheet_name"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_sheet_rows_sheet_name", table_name="sheet_rows")
    op.drop_table("sheet_rows")
