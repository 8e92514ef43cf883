"""
Tests for the step lifecycle controller.

Runs against the in-memory repository; the SQLAlchemy repository is
covered in test_form_record_repository.py.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime

import pytest

from database.repositories import InMemoryFormRecordRepository
from form_engine import IssueCode, Severity
from lifecycle import (
    ErrorCode,
    FormStatus,
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
    RepositoryError,
    StepLifecycleController,
    StepPayloadError,
    SubmissionRejectedError,
)

# Same clock as the controller fixture
TODAY = date(2026, 3, 15)
NOW = datetime(2026, 3, 15, 12, 0, 0)


class FlakyRepository(InMemoryFormRecordRepository):
    """In-memory repository whose first ``failures`` transactions fail."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    @asynccontextmanager
    async def transaction(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RepositoryError("database is locked")
        async with super().transaction() as tx:
            yield tx


def make_controller(schema, repository, retry, audit_logger=None):
    return StepLifecycleController(
        schema,
        repository,
        retry_config=retry,
        clock=lambda: NOW,
        today=lambda: TODAY,
        audit_logger=audit_logger,
    )


async def save_complete(controller, complete_step1, complete_step2, owner_id="user-1"):
    first = await controller.save_step(1, complete_step1, owner_id=owner_id)
    await controller.save_step(2, complete_step2, record_id=first.record.id)
    return first.record.id


async def submitted(controller, complete_step1, complete_step2):
    record_id = await save_complete(controller, complete_step1, complete_step2)
    await controller.submit(record_id)
    return record_id


class TestSaveStep:
    """Tests for StepLifecycleController.save_step."""

    @pytest.mark.asyncio
    async def test_step_one_creates_draft(self, controller, memory_repository, complete_step1):
        result = await controller.save_step(1, complete_step1, owner_id="user-1")
        record = result.record

        assert record.status == FormStatus.DRAFT
        assert record.form_id == "statement_of_financial_condition"
        assert record.owner_id == "user-1"
        assert record.last_completed_step == 1
        assert record.step_completion_status[1].completed is True
        assert record.step_completion_status[1].updated_at == NOW
        assert record.created_at == NOW
        assert record.field_values["lnqa_cash"] == "1,000.00"
        assert record.computed_values["lnqa_total_liquid_assets"] == 1500.0
        assert record.computed_values["nw_total_liabilities"] == 250.0
        assert result.issues == []
        assert result.reverted_to_draft is False
        assert len(memory_repository) == 1

    @pytest.mark.asyncio
    async def test_new_record_must_start_at_step_one(self, controller, memory_repository, complete_step2):
        with pytest.raises(StepPayloadError) as exc_info:
            await controller.save_step(2, complete_step2, owner_id="user-1")
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == ErrorCode.INVALID_STEP_PAYLOAD
        assert len(memory_repository) == 0

    @pytest.mark.asyncio
    async def test_unknown_record_id(self, controller, complete_step1):
        with pytest.raises(RecordNotFoundError) as exc_info:
            await controller.save_step(1, complete_step1, record_id="missing")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_foreign_field_is_rejected(self, controller, memory_repository):
        """A field from another step fails the whole save."""
        with pytest.raises(StepPayloadError) as exc_info:
            await controller.save_step(1, {"customer_names": "A", "additional_notes": "x"})
        assert exc_info.value.field_id == "additional_notes"
        assert exc_info.value.step == 1
        assert len(memory_repository) == 0

    @pytest.mark.asyncio
    async def test_owner_record_is_reused(self, controller, memory_repository, complete_step1, complete_step2):
        first = await controller.save_step(1, complete_step1, owner_id="user-1")
        second = await controller.save_step(2, complete_step2, owner_id="user-1")

        assert second.record.id == first.record.id
        assert second.record.completed_steps() == [1, 2]
        assert len(memory_repository) == 1

    @pytest.mark.asyncio
    async def test_steps_are_merged(self, controller, complete_step1, complete_step2):
        record_id = await save_complete(controller, complete_step1, complete_step2)
        record = await controller.get_record(record_id)

        assert record.field_values["customer_names"] == "Jordan Anderson"
        assert record.field_values["sig_account_owner_printed_name"] == "Jordan Anderson"
        assert record.last_completed_step == 2

    @pytest.mark.asyncio
    async def test_issues_are_advisory(self, controller):
        """Invalid values are saved and reported, not refused."""
        result = await controller.save_step(1, {"lnqa_cash": "-5"})

        codes = {(i.field_id, i.code) for i in result.issues}
        assert ("customer_names", IssueCode.REQUIRED) in codes
        assert ("lnqa_cash", IssueCode.RANGE) in codes
        assert result.record.field_values["lnqa_cash"] == "-5"
        assert result.record.step_completion_status[1].completed is True

    @pytest.mark.asyncio
    async def test_resave_is_idempotent(self, controller, complete_step1):
        """Saving the same rows twice neither duplicates rows nor changes totals."""
        payload = dict(complete_step1, iqa_rows=[
            {"row_id": "r1", "iqa_item_name": "Private LP", "iqa_purchase_amount_value": "100"},
        ])
        first = await controller.save_step(1, payload)
        second = await controller.save_step(1, payload, record_id=first.record.id)

        assert len(second.record.field_values["iqa_rows"]) == 1
        assert second.record.computed_values == first.record.computed_values
        assert second.record.computed_values["iqa_total"] == 100.0

    @pytest.mark.asyncio
    async def test_external_ids_accepted(self, controller):
        result = await controller.save_step(1, {"liquid_non_qualified_assets_cash_money_markets": "42"})
        assert result.record.field_values == {"lnqa_cash": "42"}

    @pytest.mark.asyncio
    async def test_result_to_dict(self, controller, complete_step1):
        data = (await controller.save_step(1, complete_step1)).to_dict()
        assert data["record"]["status"] == "draft"
        assert data["issues"] == []
        assert data["reverted_to_draft"] is False


class TestSubmit:
    """Tests for StepLifecycleController.submit."""

    @pytest.mark.asyncio
    async def test_submit_complete_form(self, controller, complete_step1, complete_step2):
        record_id = await save_complete(controller, complete_step1, complete_step2)
        result = await controller.submit(record_id)

        assert result.record.status == FormStatus.SUBMITTED
        assert result.record.submitted_at == NOW
        stored = await controller.get_record(record_id)
        assert stored.status == FormStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_incomplete_steps_block_submit(self, controller, complete_step1):
        """A form whose step 2 was never saved cannot be submitted."""
        record_id = (await controller.save_step(1, complete_step1)).record.id

        with pytest.raises(SubmissionRejectedError) as exc_info:
            await controller.submit(record_id)

        error = exc_info.value
        assert error.incomplete_steps == [2]
        assert error.status_code == 400
        assert "sig_account_owner_signature" in {i.field_id for i in error.issues}
        assert (await controller.get_record(record_id)).status == FormStatus.DRAFT

    @pytest.mark.asyncio
    async def test_errors_in_earlier_step_block_submit(self, controller, complete_step1, complete_step2):
        """Step 1 is re-validated at submit even though it was saved earlier."""
        step1 = dict(complete_step1)
        del step1["customer_names"]
        record_id = await save_complete(controller, step1, complete_step2)

        with pytest.raises(SubmissionRejectedError) as exc_info:
            await controller.submit(record_id)
        assert exc_info.value.incomplete_steps == []
        assert [i.field_id for i in exc_info.value.issues if i.is_error] == ["customer_names"]

    @pytest.mark.asyncio
    async def test_joint_flag_string_requires_joint_signature(self, controller, complete_step1, complete_step2):
        """A joint flag posted as "true" cannot skip the joint owner signature."""
        step1 = dict(complete_step1, has_joint_owner="true")
        record_id = await save_complete(controller, step1, complete_step2)

        with pytest.raises(SubmissionRejectedError) as exc_info:
            await controller.submit(record_id)
        assert [(i.field_id, i.code) for i in exc_info.value.issues if i.is_error] == [
            ("sig_joint_owner_signature", IssueCode.SIGNATURE_SET_INCOMPLETE)
        ]

    @pytest.mark.asyncio
    async def test_warnings_do_not_block_submit(self, controller, complete_step1, complete_step2):
        step1 = dict(complete_step1, lnqa_total_liquid_assets="1600")
        record_id = await save_complete(controller, step1, complete_step2)

        result = await controller.submit(record_id)
        assert result.record.status == FormStatus.SUBMITTED
        assert [(i.code, i.severity) for i in result.issues] == [
            (IssueCode.TOTAL_MISMATCH, Severity.WARNING)
        ]

    @pytest.mark.asyncio
    async def test_submit_twice(self, controller, complete_step1, complete_step2):
        record_id = await submitted(controller, complete_step1, complete_step2)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await controller.submit(record_id)
        assert exc_info.value.status_code == 409
        assert exc_info.value.current_status == "submitted"
        assert exc_info.value.target_status == "submitted"

    @pytest.mark.asyncio
    async def test_submit_unknown_record(self, controller):
        with pytest.raises(RecordNotFoundError):
            await controller.submit("missing")

    @pytest.mark.asyncio
    async def test_rejection_response(self, controller, complete_step1):
        record_id = (await controller.save_step(1, complete_step1)).record.id
        with pytest.raises(SubmissionRejectedError) as exc_info:
            await controller.submit(record_id)

        response = exc_info.value.to_response(request_id="req-1")
        assert response.code == "VALIDATION_ERROR"
        assert response.status_code == 400
        assert response.request_id == "req-1"
        assert response.details["incomplete_steps"] == [2]
        assert "sig_account_owner_signature" in {fe.field for fe in response.field_errors}


class TestEditAfterSubmit:
    """Saving a step of a non-draft record reverts it to draft."""

    @pytest.mark.asyncio
    async def test_edit_approved_record(self, controller, complete_step1, complete_step2):
        record_id = await submitted(controller, complete_step1, complete_step2)
        await controller.approve(record_id, reviewer="principal-1")

        result = await controller.save_step(1, {"lnqa_cash": "2,000"}, record_id=record_id)

        assert result.reverted_to_draft is True
        assert result.record.status == FormStatus.DRAFT
        assert result.record.computed_values["lnqa_total_liquid_assets"] == 2500.0

    @pytest.mark.asyncio
    async def test_edit_submitted_record(self, controller, complete_step1, complete_step2):
        record_id = await submitted(controller, complete_step1, complete_step2)
        result = await controller.save_step(2, {"additional_notes": "Updated"}, record_id=record_id)
        assert result.reverted_to_draft is True
        assert (await controller.get_record(record_id)).status == FormStatus.DRAFT

    @pytest.mark.asyncio
    async def test_repeated_edit_reverts_once(self, statement_schema, memory_repository, fast_retry, complete_step1, complete_step2):
        """The second identical save finds a draft and reports no reversion."""
        events = []
        controller = make_controller(
            statement_schema, memory_repository, fast_retry,
            audit_logger=lambda **event: events.append(event),
        )
        record_id = await submitted(controller, complete_step1, complete_step2)

        first = await controller.save_step(2, {"additional_notes": "Updated"}, record_id=record_id)
        second = await controller.save_step(2, {"additional_notes": "Updated"}, record_id=record_id)

        assert first.reverted_to_draft is True
        assert second.reverted_to_draft is False
        assert second.record.status == FormStatus.DRAFT
        assert second.record.field_values == first.record.field_values

        reversions = [
            e for e in events
            if (e["metadata"]["previous_status"], e["metadata"]["new_status"]) == ("submitted", "draft")
        ]
        assert len(reversions) == 1
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_reverted_record_can_be_resubmitted(self, controller, complete_step1, complete_step2):
        record_id = await submitted(controller, complete_step1, complete_step2)
        await controller.reject(record_id, reviewer="principal-1", notes="Fix notes")
        await controller.save_step(2, {"additional_notes": "Fixed"}, record_id=record_id)

        result = await controller.submit(record_id)
        assert result.record.status == FormStatus.SUBMITTED


class TestDelete:
    """Tests for StepLifecycleController.delete."""

    @pytest.mark.asyncio
    async def test_delete_draft(self, controller, memory_repository, complete_step1):
        record_id = (await controller.save_step(1, complete_step1)).record.id
        await controller.delete(record_id)

        assert len(memory_repository) == 0
        with pytest.raises(RecordNotFoundError):
            await controller.get_record(record_id)

    @pytest.mark.asyncio
    async def test_submitted_record_cannot_be_deleted(self, controller, memory_repository, complete_step1, complete_step2):
        record_id = await submitted(controller, complete_step1, complete_step2)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await controller.delete(record_id)
        assert exc_info.value.target_status == "deleted"
        assert len(memory_repository) == 1

    @pytest.mark.asyncio
    async def test_delete_unknown(self, controller):
        with pytest.raises(RecordNotFoundError):
            await controller.delete("missing")


class TestReview:
    """Tests for approve and reject."""

    @pytest.mark.asyncio
    async def test_approve(self, controller, complete_step1, complete_step2):
        record_id = await submitted(controller, complete_step1, complete_step2)
        result = await controller.approve(record_id, reviewer="principal-1", notes="Looks good")

        record = result.record
        assert record.status == FormStatus.APPROVED
        assert record.reviewed_by == "principal-1"
        assert record.reviewed_at == NOW
        assert record.review_notes == "Looks good"

    @pytest.mark.asyncio
    async def test_draft_cannot_be_approved(self, controller, complete_step1):
        record_id = (await controller.save_step(1, complete_step1)).record.id
        with pytest.raises(InvalidTransitionError):
            await controller.approve(record_id, reviewer="principal-1")

    @pytest.mark.asyncio
    async def test_reject(self, controller, complete_step1, complete_step2):
        record_id = await submitted(controller, complete_step1, complete_step2)
        result = await controller.reject(record_id, reviewer="principal-1")
        assert result.record.status == FormStatus.REJECTED

        with pytest.raises(InvalidTransitionError):
            await controller.approve(record_id, reviewer="principal-1")


class TestReadModels:
    """Tests for progress and owner lookups."""

    @pytest.mark.asyncio
    async def test_progress(self, controller, complete_step1):
        record_id = (await controller.save_step(1, complete_step1)).record.id
        progress = await controller.get_progress(record_id)

        assert progress.status == FormStatus.DRAFT
        assert progress.last_completed_step == 1
        assert progress.completed_steps == [1]
        assert progress.incomplete_steps == [2]

    @pytest.mark.asyncio
    async def test_record_for_owner(self, controller, complete_step1):
        record_id = (await controller.save_step(1, complete_step1, owner_id="user-7")).record.id
        assert (await controller.get_record_for_owner("user-7")).id == record_id
        assert await controller.get_record_for_owner("someone-else") is None

    @pytest.mark.asyncio
    async def test_session_for_record(self, controller, complete_step1):
        record = (await controller.save_step(1, complete_step1)).record
        session = controller.session_for(record)
        assert session.computed_values()["lnqa_total_liquid_assets"] == 1500.0


class TestPersistenceRetry:
    """Retries around the persistence collaborator."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, statement_schema, fast_retry, complete_step1):
        repository = FlakyRepository(failures=2)
        controller = make_controller(statement_schema, repository, fast_retry)

        result = await controller.save_step(1, complete_step1)

        assert repository.attempts == 3
        assert len(repository) == 1
        assert (await controller.get_record(result.record.id)).id == result.record.id

    @pytest.mark.asyncio
    async def test_persistent_failure_surfaces_after_bounded_retries(self, statement_schema, fast_retry, complete_step1):
        repository = FlakyRepository(failures=5)
        controller = make_controller(statement_schema, repository, fast_retry)

        with pytest.raises(PersistenceError) as exc_info:
            await controller.save_step(1, complete_step1)

        error = exc_info.value
        assert error.attempts == 3
        assert error.status_code == 503
        assert isinstance(error.last_exception, RepositoryError)
        assert repository.attempts == 3
        assert len(repository) == 0

    @pytest.mark.asyncio
    async def test_lifecycle_errors_are_not_retried(self, statement_schema, fast_retry, complete_step2):
        repository = FlakyRepository(failures=0)
        controller = make_controller(statement_schema, repository, fast_retry)

        with pytest.raises(StepPayloadError):
            await controller.save_step(2, complete_step2)
        assert repository.attempts == 1


class TestAuditEvents:
    """Status changes are reported to the audit logger."""

    @pytest.mark.asyncio
    async def test_status_changes_are_audited(self, statement_schema, memory_repository, fast_retry, complete_step1, complete_step2):
        events = []
        controller = make_controller(
            statement_schema, memory_repository, fast_retry,
            audit_logger=lambda **event: events.append(event),
        )
        record_id = await submitted(controller, complete_step1, complete_step2)
        await controller.approve(record_id, reviewer="principal-1")
        await controller.save_step(1, {"lnqa_cash": "5"}, record_id=record_id)

        transitions = [
            (e["metadata"]["previous_status"], e["metadata"]["new_status"]) for e in events
        ]
        assert transitions == [
            ("draft", "submitted"),
            ("submitted", "approved"),
            ("approved", "draft"),
        ]
        assert all(e["record_id"] == record_id for e in events)
        assert events[1]["metadata"]["reviewer"] == "principal-1"

    @pytest.mark.asyncio
    async def test_failed_operation_is_not_audited(self, statement_schema, fast_retry, complete_step1, complete_step2):
        events = []
        repository = FlakyRepository(failures=0)
        controller = make_controller(
            statement_schema, repository, fast_retry,
            audit_logger=lambda **event: events.append(event),
        )
        record_id = await save_complete(controller, complete_step1, complete_step2)

        repository.failures = repository.attempts + 10
        with pytest.raises(PersistenceError):
            await controller.submit(record_id)
        assert events == []
