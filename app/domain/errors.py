"""
app/domain/errors.py

Error taxonomy shared by the inventory, label and file storage services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class InventoryError(Exception):
    """Base exception for inventory backend failures."""


@dataclass(frozen=True)
class FieldError:
    """
    One field-level or row-level validation message.
    """

    field: str
    message: str
    row_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"field": self.field, "message": self.message}
        if self.row_number is not None:
            payload["row_number"] = self.row_number
        return payload


class ValidationError(InventoryError):
    """
    Raised when caller input is malformed. Never retried.
    """

    def __init__(self, message: str, errors: list[FieldError] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls(message, [FieldError(field=field, message=message)])

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "validation_error",
            "message": self.message,
            "errors": [error.to_dict() for error in self.errors],
        }


class NotFoundError(InventoryError):
    """Raised when a referenced summary, scan, file or archive does not exist."""


class ConflictError(InventoryError):
    """
    Raised on session-limit, duplicate-scan and already-completed conditions.

    ``already_completed`` lets racing finishers treat the error as benign.
    """

    def __init__(self, message: str, *, already_completed: bool = False) -> None:
        super().__init__(message)
        self.already_completed = already_completed


class RetriableStoreError(InventoryError):
    """Raised by a backing store on quota, rate-limit, timeout or transient failures."""


class StoreUnavailableError(InventoryError):
    """Raised once retries against a backing store are exhausted."""


class StoreRequestError(InventoryError):
    """Raised when a backing store rejects a request in a non-retriable way."""


class IntegrityError(InventoryError):
    """Raised when persisted data violates an invariant, such as duplicate active summaries."""
