"""
Database layer for form records.

This module provides:
- SQLAlchemy ORM model for the form_records table
- Async engine and session factory construction
- Repository implementations of lifecycle.FormRecordRepository
"""

from .models import Base, FormRecordRow
from .async_engine import (
    check_database_connection,
    create_engine,
    get_session_factory,
    init_database,
)
from .repositories import InMemoryFormRecordRepository, SQLAlchemyFormRecordRepository

__all__ = [
    "Base",
    "FormRecordRow",
    "check_database_connection",
    "create_engine",
    "get_session_factory",
    "init_database",
    "InMemoryFormRecordRepository",
    "SQLAlchemyFormRecordRepository",
]
