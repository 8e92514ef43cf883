"""
Step Lifecycle Controller.

Entry point for outer layers (HTTP handlers, jobs). Saves steps, enforces
the status state machine and runs full-form validation before a submit:

- save_step: create on step 1, revert non-draft records to draft, merge the
  step's fields, refresh computed totals, mark the step completed
- submit: draft -> submitted, only when the whole form validates
- delete: only while draft
- approve / reject: reviewer decisions on submitted records

Each operation is a single repository transaction, wrapped in bounded
retries. Only RepositoryError is retried; lifecycle errors surface on the
first attempt.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

from config.settings import EngineSettings, get_settings
from form_engine import (
    FormSchema,
    FormSession,
    PayloadError,
    ValidationIssue,
    has_errors,
    normalize_step_payload,
)
from resilience import RetryConfig, RetryExhausted, run_with_retry

from .errors import (
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
    StepPayloadError,
    SubmissionRejectedError,
)
from .record import FormProgress, FormRecord, utcnow
from .repository import FormRecordRepository, FormRecordTransaction, RepositoryError
from .status import FormStatus, can_transition, transition_error_message

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class LifecycleResult:
    """Outcome of a successful controller operation."""
    record: FormRecord
    issues: List[ValidationIssue] = field(default_factory=list)
    reverted_to_draft: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.model_dump(mode="json"),
            "issues": [issue.to_dict() for issue in self.issues],
            "reverted_to_draft": self.reverted_to_draft,
        }


class StepLifecycleController:
    """
    Persists step saves and drives form record status transitions.

    Args:
        schema: Schema the records are filled against.
        repository: Storage collaborator.
        settings: Engine settings (tolerances, retry policy).
        retry_config: Overrides the retry policy built from settings.
        clock: Returns the current UTC time.
        today: Returns today's date for not-in-future checks.
        audit_logger: Optional callable receiving status change events.
    """

    def __init__(
        self,
        schema: FormSchema,
        repository: FormRecordRepository,
        settings: Optional[EngineSettings] = None,
        retry_config: Optional[RetryConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        today: Optional[Callable[[], Any]] = None,
        audit_logger: Optional[Callable[..., None]] = None,
    ):
        self._schema = schema
        self._repository = repository
        self._settings = settings or get_settings()
        self._retry = retry_config or RetryConfig.from_settings(
            self._settings.resilience,
            retryable_exceptions=(RepositoryError,),
        )
        self._clock = clock
        self._today = today
        self._audit_logger = audit_logger

    @property
    def schema(self) -> FormSchema:
        return self._schema

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def save_step(
        self,
        step: int,
        payload: Mapping[str, Any],
        record_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> LifecycleResult:
        """
        Save one step of a form.

        Creates the record on a step-1 save when neither ``record_id`` nor an
        existing record of ``owner_id`` is found. Validation issues for the
        step are returned, never raised.

        Raises:
            StepPayloadError: Unknown step, foreign fields, malformed rows, or
                a non-step-1 save for a record that does not exist yet.
            RecordNotFoundError: ``record_id`` does not exist.
            PersistenceError: Storage kept failing.
        """
        try:
            values = normalize_step_payload(self._schema, step, payload)
        except PayloadError as e:
            raise StepPayloadError(str(e), step=step, field_id=e.field_id) from e

        async def operation() -> LifecycleResult:
            async with self._repository.transaction() as tx:
                record = await self._load_for_save(tx, step, record_id, owner_id)
                now = self._clock()

                previous = record.status
                reverted = previous != FormStatus.DRAFT
                if reverted:
                    logger.warning(
                        f"Record {record.id} edited while {previous.value}; reverting to draft",
                        extra={"record_id": record.id, "step": step},
                    )
                    record.status = FormStatus.DRAFT

                session = self._session(record.field_values)
                session.update(values)
                record.field_values = session.store.snapshot()
                record.computed_values = session.computed_values()
                record.mark_step_completed(step, now)
                record.updated_at = now

                await tx.save(record)
                issues = session.validate_step(step)

            if reverted:
                self._audit(record, previous, FormStatus.DRAFT, reason="edit")
            logger.info(
                f"Saved step {step} of record {record.id}",
                extra={"record_id": record.id, "step": step, "issues": len(issues)},
            )
            return LifecycleResult(record=record, issues=issues, reverted_to_draft=reverted)

        return await self._run(operation, f"save_step({step})")

    async def submit(self, record_id: str) -> LifecycleResult:
        """
        Submit a draft after validating the whole form.

        Raises:
            RecordNotFoundError: Unknown record.
            InvalidTransitionError: The record is not a draft.
            SubmissionRejectedError: Errors anywhere in the form or a required
                step was never saved. Carries the full issue list.
        """
        async def operation() -> LifecycleResult:
            async with self._repository.transaction() as tx:
                record = await self._require(tx, record_id)
                self._check_transition(record, FormStatus.SUBMITTED)

                session = self._session(record.field_values)
                issues = session.validate_form()
                incomplete = self._incomplete_steps(record)
                if has_errors(issues) or incomplete:
                    logger.info(
                        f"Submission of record {record_id} rejected",
                        extra={"record_id": record_id, "incomplete_steps": incomplete},
                    )
                    raise SubmissionRejectedError(issues, incomplete)

                now = self._clock()
                previous = record.status
                record.status = FormStatus.SUBMITTED
                record.submitted_at = now
                record.updated_at = now
                record.computed_values = session.computed_values()
                await tx.save(record)

            self._audit(record, previous, FormStatus.SUBMITTED)
            logger.info(f"Record {record_id} submitted", extra={"record_id": record_id})
            return LifecycleResult(record=record, issues=issues)

        return await self._run(operation, "submit")

    async def delete(self, record_id: str) -> None:
        """
        Hard delete a draft record.

        Raises:
            RecordNotFoundError: Unknown record.
            InvalidTransitionError: Submitted or reviewed records cannot be deleted.
        """
        async def operation() -> None:
            async with self._repository.transaction() as tx:
                record = await self._require(tx, record_id)
                if record.status != FormStatus.DRAFT:
                    raise InvalidTransitionError(
                        f"Cannot delete a {record.status.value} record; only drafts can be deleted",
                        record.status.value,
                        "deleted",
                    )
                await tx.delete(record_id)

            logger.info(f"Record {record_id} deleted", extra={"record_id": record_id})

        await self._run(operation, "delete")

    async def approve(self, record_id: str, reviewer: str, notes: Optional[str] = None) -> LifecycleResult:
        """Approve a submitted record."""
        return await self._review(record_id, FormStatus.APPROVED, reviewer, notes)

    async def reject(self, record_id: str, reviewer: str, notes: Optional[str] = None) -> LifecycleResult:
        """Reject a submitted record."""
        return await self._review(record_id, FormStatus.REJECTED, reviewer, notes)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_record(self, record_id: str) -> FormRecord:
        async def operation() -> FormRecord:
            record = await self._repository.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            return record

        return await self._run(operation, "get_record")

    async def get_record_for_owner(self, owner_id: str) -> Optional[FormRecord]:
        return await self._run(
            lambda: self._repository.get_for_owner(self._schema.form_id, owner_id),
            "get_record_for_owner",
        )

    async def get_progress(self, record_id: str) -> FormProgress:
        record = await self.get_record(record_id)
        completed = record.completed_steps()
        return FormProgress(
            record_id=record.id,
            form_id=record.form_id,
            status=record.status,
            last_completed_step=record.last_completed_step,
            step_completion_status=record.step_completion_status,
            completed_steps=completed,
            incomplete_steps=[s.number for s in self._schema.steps if s.number not in completed],
        )

    def session_for(self, record: FormRecord) -> FormSession:
        """Open an in-memory editing session seeded with a record's values."""
        return self._session(record.field_values)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        try:
            return await run_with_retry(operation, self._retry, description=description)
        except RetryExhausted as e:
            logger.error(
                f"Persistence failed for {description} after {e.attempts} attempts: {e.last_exception}"
            )
            raise PersistenceError(
                f"Storage unavailable during {description}",
                last_exception=e.last_exception,
                attempts=e.attempts,
            ) from e.last_exception

    async def _load_for_save(
        self,
        tx: FormRecordTransaction,
        step: int,
        record_id: Optional[str],
        owner_id: Optional[str],
    ) -> FormRecord:
        if record_id is not None:
            return await self._require(tx, record_id)

        if owner_id is not None:
            existing = await tx.get_for_owner(self._schema.form_id, owner_id)
            if existing is not None:
                return existing

        if step != 1:
            raise StepPayloadError(
                f"A new record can only be started from step 1, got step {step}",
                step=step,
            )

        now = self._clock()
        record = FormRecord(
            id=str(uuid.uuid4()),
            form_id=self._schema.form_id,
            owner_id=owner_id,
            status=FormStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        logger.info(f"Creating record {record.id}", extra={"record_id": record.id, "owner_id": owner_id})
        return record

    async def _require(self, tx: FormRecordTransaction, record_id: str) -> FormRecord:
        record = await tx.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    async def _review(
        self, record_id: str, target: FormStatus, reviewer: str, notes: Optional[str]
    ) -> LifecycleResult:
        async def operation() -> LifecycleResult:
            async with self._repository.transaction() as tx:
                record = await self._require(tx, record_id)
                self._check_transition(record, target)

                now = self._clock()
                previous = record.status
                record.status = target
                record.reviewed_at = now
                record.reviewed_by = reviewer
                record.review_notes = notes
                record.updated_at = now
                await tx.save(record)

            self._audit(record, previous, target, reviewer=reviewer)
            logger.info(
                f"Record {record_id} {target.value} by {reviewer}",
                extra={"record_id": record_id, "reviewer": reviewer},
            )
            return LifecycleResult(record=record)

        return await self._run(operation, target.value)

    def _check_transition(self, record: FormRecord, target: FormStatus) -> None:
        if not can_transition(record.status, target):
            raise InvalidTransitionError(
                transition_error_message(record.status, target),
                record.status.value,
                target.value,
            )

    def _incomplete_steps(self, record: FormRecord) -> List[int]:
        completed = set(record.completed_steps())
        return [
            s.number for s in self._schema.steps
            if s.required_for_submission and s.number not in completed
        ]

    def _session(self, values: Mapping[str, Any]) -> FormSession:
        return FormSession(
            self._schema,
            values,
            subtotal_tolerance=self._settings.subtotal_tolerance,
            cross_check_tolerance=self._settings.cross_check_tolerance,
            today=self._today,
        )

    def _audit(self, record: FormRecord, previous: FormStatus, new: FormStatus, **metadata: Any) -> None:
        if self._audit_logger:
            self._audit_logger(
                record_id=record.id,
                event_type="STATUS_CHANGE",
                description=f"Status changed from {previous.value} to {new.value}",
                metadata={"previous_status": previous.value, "new_status": new.value, **metadata},
            )
