"""
app/schemas/labels.py

Request and response schemas for the QR label endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class LabelBatchResponse(BaseModel):
    """
    API response model for a generated label batch.
    """

    session_id: str
    location: str
    labels_generated: int = Field(..., ge=1)
    archive_filename: str
    archive_url: str


class LabelScanRequest(BaseModel):
    """
    Raw text read from a generated label plus the scanning user.
    """

    model_config = {"populate_by_name": True}

    payload: str
    user: str | None = None
    user_name: str | None = Field(default=None, alias="userName")
    month: str | int | None = None
    year: str | int | None = None


class ArchivePurgeResponse(BaseModel):
    removed: int = Field(..., ge=0)
