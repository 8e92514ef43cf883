"""
SQLAlchemy ORM models for form records.

One row per form record. Step completion, raw field values and computed
totals are stored as JSON documents; the record shape itself is owned by
``lifecycle.record.FormRecord``.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class FormRecordRow(Base):
    """Persisted form record."""

    __tablename__ = "form_records"

    id = Column(String(36), primary_key=True)
    form_id = Column(String(100), nullable=False, index=True)
    owner_id = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="draft")

    last_completed_step = Column(Integer, nullable=False, default=0)
    step_completion_status = Column(JSON, nullable=False, default=dict)
    field_values = Column(JSON, nullable=False, default=dict)
    computed_values = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    submitted_at = Column(DateTime, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String(100), nullable=True)
    review_notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_form_records_owner", "form_id", "owner_id"),
        Index("ix_form_records_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<FormRecordRow(id={self.id}, form_id={self.form_id}, status={self.status})>"
