"""Pytest configuration and fixtures for test suite."""

import os
import sys
from datetime import date, datetime
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("FORMS_ENVIRONMENT", "test")
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


TODAY = date(2026, 3, 15)
NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
def statement_schema():
    """The Statement of Financial Condition schema loaded from its YAML document."""
    from forms.registry import FormSchemaLoader

    return FormSchemaLoader().load("statement_of_financial_condition")


@pytest.fixture
def session(statement_schema):
    """Fresh editing session over the statement schema with a fixed clock."""
    from form_engine import FormSession

    return FormSession(statement_schema, today=lambda: TODAY)


@pytest.fixture
def engine_settings():
    from config.settings import EngineSettings

    return EngineSettings()


@pytest.fixture
def fast_retry():
    """Retry policy without sleeping."""
    from lifecycle import RepositoryError
    from resilience import RetryConfig

    return RetryConfig(
        max_attempts=3,
        base_delay=0.0,
        jitter=0.0,
        retryable_exceptions=(RepositoryError,),
    )


@pytest.fixture
def memory_repository():
    from database.repositories import InMemoryFormRecordRepository

    return InMemoryFormRecordRepository()


@pytest.fixture
def controller(statement_schema, memory_repository, engine_settings, fast_retry):
    from lifecycle import StepLifecycleController

    return StepLifecycleController(
        statement_schema,
        memory_repository,
        settings=engine_settings,
        retry_config=fast_retry,
        clock=lambda: NOW,
        today=lambda: TODAY,
    )


@pytest.fixture
def complete_step1():
    """A step-1 payload that passes validation."""
    return {
        "rr_name": "Dana Whitfield",
        "rr_no": "RR-2231",
        "customer_names": "Jordan Anderson",
        "account_type": "Individual",
        "lnqa_cash": "1,000.00",
        "lnqa_brokerage_nonmanaged": "500",
        "liab_credit_cards": "250",
    }


@pytest.fixture
def complete_step2():
    """A step-2 payload with every required signature block filled in."""
    payload = {"additional_notes": "Reviewed with client."}
    for prefix, name in (
        ("sig_account_owner", "Jordan Anderson"),
        ("sig_financial_professional", "Dana Whitfield"),
        ("sig_registered_principal", "Sam Ortiz"),
    ):
        payload[f"{prefix}_signature"] = f"data:image/png;base64,{prefix}"
        payload[f"{prefix}_printed_name"] = name
        payload[f"{prefix}_date"] = "2026-03-01"
    return payload
