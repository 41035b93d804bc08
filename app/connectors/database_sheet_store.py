"""
app/connectors/database_sheet_store.py

Tabular store persisted in the ``sheet_rows`` table.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.errors import NotFoundError, RetriableStoreError, StoreRequestError
from db.models.sheet_row import SheetRow

logger = logging.getLogger(__name__)

_APPEND_ATTEMPTS = 3


class DatabaseSheetStore:
    """
    Positional sheets on top of a relational table.

    Appends take ``max(row_number) + 1``; concurrent appends that collide on
    the (sheet_name, row_number) unique constraint are retried.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except OperationalError as exc:
            session.rollback()
            raise RetriableStoreError("Database unavailable for sheet access.") from exc
        except SQLAlchemyIntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreRequestError("Sheet database operation failed.") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def read_rows(self, sheet: str) -> list[list[str]]:
        with self._session_scope() as session:
            stored = session.execute(
                select(SheetRow.row_number, SheetRow.cells)
                .where(SheetRow.sheet_name == sheet)
                .order_by(SheetRow.row_number)
            ).all()

        rows: list[list[str]] = []
        for row_number, cells in stored:
            while len(rows) < row_number - 1:
                rows.append([])
            rows.append([str(value) for value in cells or []])
        return rows

    def append_row(self, sheet: str, values: Sequence[str]) -> None:
        for attempt in range(1, _APPEND_ATTEMPTS + 1):
            try:
                with self._session_scope() as session:
                    last_row = session.execute(
                        select(func.max(SheetRow.row_number)).where(SheetRow.sheet_name == sheet)
                    ).scalar_one_or_none()
                    session.add(
                        SheetRow(
                            sheet_name=sheet,
                            row_number=max(last_row or 0, 1) + 1,
                            cells=[str(value) for value in values],
                        )
                    )
                return
            except SQLAlchemyIntegrityError:
                logger.warning("Sheet append collided sheet=%s attempt=%s/%s", sheet, attempt, _APPEND_ATTEMPTS)
        raise RetriableStoreError(f"Append to sheet {sheet} kept colliding with concurrent writers.")

    def update_row(self, sheet: str, row_number: int, values: Sequence[str]) -> None:
        with self._session_scope() as session:
            row = session.execute(
                select(SheetRow).where(SheetRow.sheet_name == sheet, SheetRow.row_number == row_number)
            ).scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Row {row_number} does not exist in sheet {sheet}.")
            row.cells = [str(value) for value in values]

    def clear_sheet(self, sheet: str) -> None:
        with self._session_scope() as session:
            session.execute(delete(SheetRow).where(SheetRow.sheet_name == sheet, SheetRow.row_number > 1))

    def ensure_sheet(self, sheet: str, headers: Sequence[str]) -> None:
        try:
            with self._session_scope() as session:
                header = session.execute(
                    select(SheetRow.id).where(SheetRow.sheet_name == sheet, SheetRow.row_number == 1)
                ).scalar_one_or_none()
                if header is None:
                    session.add(SheetRow(sheet_name=sheet, row_number=1, cells=list(headers)))
                    logger.info("Created sheet name=%s", sheet)
        except SQLAlchemyIntegrityError:
            logger.info("Sheet created concurrently name=%s", sheet)
