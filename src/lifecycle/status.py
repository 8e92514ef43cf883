"""
Form Record Status.

Lifecycle of a persisted form record:
- DRAFT: Created by the first step-1 save; editable, deletable
- SUBMITTED: Full-form validation passed; awaiting review
- APPROVED / REJECTED: Reviewer decision

Any step save on a non-draft record moves it back to DRAFT first, so an
approved statement that is edited has to be submitted again.
"""

from enum import Enum
from typing import Dict, List


class FormStatus(str, Enum):
    """Valid statuses of a form record."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def from_string(cls, value: str) -> "FormStatus":
        """Convert a stored string to FormStatus."""
        return cls(value.lower())


# Valid status transitions
VALID_TRANSITIONS: Dict[FormStatus, List[FormStatus]] = {
    FormStatus.DRAFT: [FormStatus.SUBMITTED],
    FormStatus.SUBMITTED: [FormStatus.APPROVED, FormStatus.REJECTED, FormStatus.DRAFT],
    FormStatus.APPROVED: [FormStatus.DRAFT],
    FormStatus.REJECTED: [FormStatus.DRAFT],
}


def can_transition(current: FormStatus, target: FormStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


def transition_error_message(current: FormStatus, target: FormStatus) -> str:
    valid = [s.value for s in VALID_TRANSITIONS.get(current, [])]
    return (
        f"Cannot transition from {current.value} to {target.value}. "
        f"Valid transitions: {valid}"
    )
