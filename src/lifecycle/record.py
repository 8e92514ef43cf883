"""
Form record models.

``FormRecord`` is the shape the engine dictates to the persistence
collaborator. Repositories store and return it; the controller is the only
code that changes it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .status import FormStatus


def utcnow() -> datetime:
    return datetime.utcnow()


class StepCompletion(BaseModel):
    """Completion metadata for one step."""
    completed: bool = False
    updated_at: Optional[datetime] = None


class FormRecord(BaseModel):
    """A persisted, step-wise saved form."""

    model_config = ConfigDict(use_enum_values=False)

    id: str = Field(..., description="Record identifier")
    form_id: str = Field(..., description="Schema the record was filled against")
    owner_id: Optional[str] = Field(None, description="User who owns the record")
    status: FormStatus = Field(default=FormStatus.DRAFT)
    last_completed_step: int = Field(default=0, ge=0)
    step_completion_status: Dict[int, StepCompletion] = Field(default_factory=dict)
    field_values: Dict[str, Any] = Field(default_factory=dict)
    computed_values: Dict[str, float] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None

    @property
    def is_draft(self) -> bool:
        return self.status == FormStatus.DRAFT

    def completed_steps(self) -> List[int]:
        return sorted(n for n, c in self.step_completion_status.items() if c.completed)

    def mark_step_completed(self, step: int, when: Optional[datetime] = None) -> None:
        when = when or utcnow()
        self.step_completion_status[step] = StepCompletion(completed=True, updated_at=when)
        self.last_completed_step = max(self.last_completed_step, step)


class FormProgress(BaseModel):
    """Read model of a record's progress through the steps."""
    record_id: str
    form_id: str
    status: FormStatus
    last_completed_step: int
    step_completion_status: Dict[int, StepCompletion]
    completed_steps: List[int]
    incomplete_steps: List[int]
