"""
Form Record Repository interface.

The controller talks to storage only through this contract, so the storage
engine can be swapped (in-memory for tests, SQLAlchemy in production)
without touching lifecycle logic.

All writes of one controller operation happen inside a single
``transaction()``: either every change becomes visible or none does.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional

from .record import FormRecord


class RepositoryError(Exception):
    """Raised by repositories when the storage backend fails (I/O, locking, connectivity)."""


class FormRecordTransaction(ABC):
    """Operations available inside one repository transaction."""

    @abstractmethod
    async def get(self, record_id: str) -> Optional[FormRecord]:
        """
        Retrieve a record by ID.

        Args:
            record_id: Unique identifier of the record

        Returns:
            A copy of the record if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_for_owner(self, form_id: str, owner_id: str) -> Optional[FormRecord]:
        """
        Retrieve the record an owner holds for a form.

        Returns:
            The most recently updated matching record, None if there is none
        """
        pass

    @abstractmethod
    async def save(self, record: FormRecord) -> None:
        """
        Save a record (create or update).

        Args:
            record: The record to save
        """
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """
        Delete a record by ID.

        Returns:
            True if deleted, False if not found
        """
        pass


class FormRecordRepository(ABC):
    """Storage collaborator for form records."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager:
        """
        Open a transaction.

        Usage:
            async with repository.transaction() as tx:
                record = await tx.get(record_id)
                await tx.save(record)

        Commits on clean exit and rolls back if the block raises.

        Raises:
            RepositoryError: The backend failed while opening or committing.
        """
        pass

    async def get(self, record_id: str) -> Optional[FormRecord]:
        """Read a record in its own transaction."""
        async with self.transaction() as tx:
            return await tx.get(record_id)

    async def get_for_owner(self, form_id: str, owner_id: str) -> Optional[FormRecord]:
        """Read an owner's record in its own transaction."""
        async with self.transaction() as tx:
            return await tx.get_for_owner(form_id, owner_id)
