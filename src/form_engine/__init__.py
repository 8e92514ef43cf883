"""
Progressive disclosure form engine.

Side-effect-free core shared by every caller: schema, value store,
visibility, derivation and validation. Nothing in this package performs
I/O; persistence lives in ``lifecycle`` and ``database``.
"""

from .conditions import Predicate, compile_condition
from .derivation import DerivationEngine, DerivationResult, DerivationState, DerivedValue
from .errors import DerivationCycleError, PayloadError, SchemaError
from .field_schema import (
    ColumnDefinition,
    DerivationNode,
    FieldConstraints,
    FieldDefinition,
    FieldIdMap,
    FieldKind,
    FormSchema,
    Reconciliation,
    SignatureBlock,
    StepDefinition,
    schema_from_document,
)
from .payloads import FinancialRow, build_financial_rows, normalize_step_payload
from .session import FormSession
from .validation import (
    IssueCode,
    Severity,
    ValidationEngine,
    ValidationIssue,
    ValidationScope,
    has_errors,
)
from .value_store import ValueEntry, ValueStore
from .visibility import VisibilityResolver

__all__ = [
    # Schema
    "ColumnDefinition",
    "DerivationNode",
    "FieldConstraints",
    "FieldDefinition",
    "FieldIdMap",
    "FieldKind",
    "FormSchema",
    "Reconciliation",
    "SignatureBlock",
    "StepDefinition",
    "schema_from_document",
    "Predicate",
    "compile_condition",
    # Runtime
    "ValueEntry",
    "ValueStore",
    "VisibilityResolver",
    "DerivationEngine",
    "DerivationResult",
    "DerivationState",
    "DerivedValue",
    "ValidationEngine",
    "ValidationIssue",
    "ValidationScope",
    "IssueCode",
    "Severity",
    "has_errors",
    "FormSession",
    # Payloads
    "FinancialRow",
    "build_financial_rows",
    "normalize_step_payload",
    # Errors
    "SchemaError",
    "DerivationCycleError",
    "PayloadError",
]
