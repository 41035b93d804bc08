"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.sheet_row import SheetRow

__all__ = [
    "SheetRow",
]
