"""Form record repository implementations."""

from .in_memory_repository import InMemoryFormRecordRepository, InMemoryTransaction
from .form_record_repository import SQLAlchemyFormRecordRepository, SQLAlchemyTransaction

__all__ = [
    "InMemoryFormRecordRepository",
    "InMemoryTransaction",
    "SQLAlchemyFormRecordRepository",
    "SQLAlchemyTransaction",
]
