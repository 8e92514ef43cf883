"""
SQLAlchemy form record repository.

Each transaction is one AsyncSession inside ``session.begin()``: it commits
when the block exits cleanly and rolls back when it raises. Backend
failures (SQLAlchemy errors, OS-level I/O errors) are re-raised as
RepositoryError so the controller can retry them; lifecycle errors raised
inside the block pass through untouched after the rollback.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from config.database import DatabaseSettings
from database.async_engine import create_engine, get_session_factory, init_database
from database.models import FormRecordRow
from lifecycle.record import FormRecord
from lifecycle.repository import FormRecordRepository, FormRecordTransaction, RepositoryError
from lifecycle.status import FormStatus

logger = logging.getLogger(__name__)

_JSON_COLUMNS = ("step_completion_status", "field_values", "computed_values")
_PLAIN_COLUMNS = (
    "form_id",
    "owner_id",
    "last_completed_step",
    "created_at",
    "updated_at",
    "submitted_at",
    "reviewed_at",
    "reviewed_by",
    "review_notes",
)


def record_to_row_values(record: FormRecord) -> dict:
    """Column values for a record; JSON columns hold JSON-safe documents."""
    json_safe = record.model_dump(mode="json", include=set(_JSON_COLUMNS))
    values = {name: getattr(record, name) for name in _PLAIN_COLUMNS}
    values.update(json_safe)
    values["status"] = record.status.value
    return values


def row_to_record(row: FormRecordRow) -> FormRecord:
    return FormRecord(
        id=row.id,
        status=FormStatus.from_string(row.status),
        **{name: getattr(row, name) for name in _PLAIN_COLUMNS},
        **{name: getattr(row, name) or {} for name in _JSON_COLUMNS},
    )


class SQLAlchemyTransaction(FormRecordTransaction):
    """Form record operations on one AsyncSession."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, record_id: str) -> Optional[FormRecord]:
        row = await self._session.get(FormRecordRow, record_id)
        return row_to_record(row) if row else None

    async def get_for_owner(self, form_id: str, owner_id: str) -> Optional[FormRecord]:
        result = await self._session.execute(
            select(FormRecordRow)
            .where(FormRecordRow.form_id == form_id, FormRecordRow.owner_id == owner_id)
            .order_by(FormRecordRow.updated_at.desc())
            .limit(1)
        )
        row = result.scalars().first()
        return row_to_record(row) if row else None

    async def save(self, record: FormRecord) -> None:
        values = record_to_row_values(record)
        row = await self._session.get(FormRecordRow, record.id)
        if row is None:
            self._session.add(FormRecordRow(id=record.id, **values))
        else:
            for name, value in values.items():
                setattr(row, name, value)
        await self._session.flush()

    async def delete(self, record_id: str) -> bool:
        row = await self._session.get(FormRecordRow, record_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True


class SQLAlchemyFormRecordRepository(FormRecordRepository):
    """
    Form records stored through SQLAlchemy async.

    Usage:
        repository = SQLAlchemyFormRecordRepository.from_settings()
        await repository.create_tables()
        ...
        await repository.close()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[AsyncEngine] = None,
    ):
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Optional[DatabaseSettings] = None) -> "SQLAlchemyFormRecordRepository":
        engine = create_engine(settings)
        return cls(get_session_factory(engine), engine=engine)

    async def create_tables(self) -> None:
        if self._engine is None:
            raise RuntimeError("Repository was built without an engine")
        try:
            await init_database(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise RepositoryError(f"Could not create form record tables: {e}") from e

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Form record engine disposed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLAlchemyTransaction]:
        session = self._session_factory()
        try:
            async with session.begin():
                yield SQLAlchemyTransaction(session)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Form record transaction failed: {e}")
            raise RepositoryError(str(e)) from e
        finally:
            await session.close()
