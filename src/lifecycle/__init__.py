"""Step lifecycle: form record status machine, persistence contract and controller."""

from .controller import LifecycleResult, StepLifecycleController
from .errors import (
    ERROR_CODE_STATUS_MAP,
    ErrorCode,
    ErrorResponse,
    FieldError,
    FormLifecycleError,
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
    StepPayloadError,
    SubmissionRejectedError,
)
from .record import FormProgress, FormRecord, StepCompletion
from .repository import FormRecordRepository, FormRecordTransaction, RepositoryError
from .status import VALID_TRANSITIONS, FormStatus, can_transition

__all__ = [
    "StepLifecycleController",
    "LifecycleResult",
    "FormStatus",
    "VALID_TRANSITIONS",
    "can_transition",
    "FormRecord",
    "FormProgress",
    "StepCompletion",
    "FormRecordRepository",
    "FormRecordTransaction",
    "RepositoryError",
    "ErrorCode",
    "ERROR_CODE_STATUS_MAP",
    "ErrorResponse",
    "FieldError",
    "FormLifecycleError",
    "InvalidTransitionError",
    "PersistenceError",
    "RecordNotFoundError",
    "StepPayloadError",
    "SubmissionRejectedError",
]
