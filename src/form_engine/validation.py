"""
Reconciliation & Validation Engine.

Produces a fresh list of ValidationIssue objects for a value store. Rules
run in a fixed order:

1. Required / range / pattern checks, active fields only
2. Paired-entry checks on repeatable rows
3. Total reconciliation of manual overrides against computed values
4. Signature-set completeness

Validation never mutates the store and never raises on bad input; bad
input is reported as an issue. Submitting a form validates with the FORM
scope, which covers the union of every step.
"""

import logging
import re
from collections import ChainMap
from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from .conditions import Predicate
from .derivation import DerivationEngine
from .field_schema import (
    FieldConstraints,
    FieldDefinition,
    FieldKind,
    FormSchema,
    Reconciliation,
    SignatureBlock,
)
from .normalization import (
    format_currency,
    is_blank,
    money,
    parse_boolean,
    parse_currency,
    parse_iso_date,
    parse_percentage,
)
from .value_store import ValueStore
from .visibility import VisibilityResolver

logger = logging.getLogger(__name__)

DEFAULT_SUBTOTAL_TOLERANCE = 0.01
DEFAULT_CROSS_CHECK_TOLERANCE = 1.00


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCode(str, Enum):
    REQUIRED = "REQUIRED"
    RANGE = "RANGE"
    PATTERN = "PATTERN"
    TOTAL_MISMATCH = "TOTAL_MISMATCH"
    PAIRED_FIELD_MISSING = "PAIRED_FIELD_MISSING"
    SIGNATURE_SET_INCOMPLETE = "SIGNATURE_SET_INCOMPLETE"


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation finding attached to the field the user must fix."""
    field_id: str
    severity: Severity
    message: str
    code: IssueCode
    group_id: Optional[str] = None
    row_id: Optional[str] = None
    delta: Optional[float] = None
    computed: Optional[float] = None
    entered: Optional[float] = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["code"] = self.code.value
        return {k: v for k, v in data.items() if v is not None}


class ScopeKind(str, Enum):
    FIELD = "field"
    STEP = "step"
    FORM = "form"


@dataclass(frozen=True)
class ValidationScope:
    """Which fields a validation pass covers."""
    kind: ScopeKind
    field_id: Optional[str] = None
    step: Optional[int] = None

    @classmethod
    def for_field(cls, field_id: str) -> "ValidationScope":
        return cls(kind=ScopeKind.FIELD, field_id=field_id)

    @classmethod
    def for_step(cls, step: int) -> "ValidationScope":
        return cls(kind=ScopeKind.STEP, step=step)

    @classmethod
    def full_form(cls) -> "ValidationScope":
        return cls(kind=ScopeKind.FORM)

    def field_ids(self, schema: FormSchema) -> List[str]:
        if self.kind == ScopeKind.FIELD:
            return [self.field_id] if schema.has_field(self.field_id) else []
        if self.kind == ScopeKind.STEP:
            if not schema.has_step(self.step):
                return []
            return list(schema.step(self.step).field_ids)
        return [f.id for f in schema.fields]


def has_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(issue.is_error for issue in issues)


class ValidationEngine:
    """
    Validates a value store against a schema.

    Args:
        schema: The form schema.
        visibility: Shared visibility resolver (one is created if omitted).
        derivation: Shared derivation engine (one is created if omitted).
        subtotal_tolerance: Default tolerance for category subtotals.
        cross_check_tolerance: Default tolerance for net worth cross-checks.
        today: Clock used for not-in-future date checks.
    """

    def __init__(
        self,
        schema: FormSchema,
        visibility: Optional[VisibilityResolver] = None,
        derivation: Optional[DerivationEngine] = None,
        subtotal_tolerance: float = DEFAULT_SUBTOTAL_TOLERANCE,
        cross_check_tolerance: float = DEFAULT_CROSS_CHECK_TOLERANCE,
        today: Callable[[], date] = date.today,
    ):
        self._schema = schema
        self._visibility = visibility or VisibilityResolver(schema)
        self._derivation = derivation or DerivationEngine(schema, self._visibility)
        self._tolerances = {
            Reconciliation.SUBTOTAL: subtotal_tolerance,
            Reconciliation.CROSS_CHECK: cross_check_tolerance,
        }
        self._today = today

    def tolerance_for(self, definition: FieldDefinition) -> float:
        if definition.tolerance is not None:
            return definition.tolerance
        return self._tolerances[definition.reconciliation]

    def validate(self, store: ValueStore, scope: Optional[ValidationScope] = None) -> List[ValidationIssue]:
        """Run every rule over the fields in ``scope`` (whole form by default)."""
        scope = scope or ValidationScope.full_form()
        field_ids = scope.field_ids(self._schema)
        in_scope: Set[str] = set(field_ids)
        active = [
            self._schema.field(fid) for fid in field_ids
            if self._visibility.is_active(fid, store)
        ]

        issues: List[ValidationIssue] = []
        for definition in active:
            issues.extend(self._check_field(definition, store))
        for definition in active:
            if definition.is_row_group and definition.pairs:
                issues.extend(self._check_pairs(definition, store.get(definition.id)))
        issues.extend(self._check_totals(active, store))
        for block in self._schema.signature_blocks:
            if in_scope.intersection(block.members):
                issues.extend(self._check_signature_block(block, store))

        logger.debug(
            f"Validated {len(field_ids)} fields ({scope.kind.value}): {len(issues)} issues",
            extra={"form_id": self._schema.form_id, "scope": scope.kind.value},
        )
        return issues

    # ------------------------------------------------------------------
    # Rule 1: required / range / pattern
    # ------------------------------------------------------------------

    def _is_required(self, constraints: FieldConstraints, store: Mapping[str, Any], owner: str) -> bool:
        if constraints.required:
            return True
        return self._holds(constraints.required_if, store, owner)

    def _holds(self, predicate: Optional[Predicate], store: Mapping[str, Any], owner: str) -> bool:
        if predicate is None:
            return False
        try:
            return predicate(store)
        except Exception as e:
            logger.warning(f"Required-if predicate for '{owner}' failed, treating as optional: {e}")
            return False

    def _check_field(self, definition: FieldDefinition, store: ValueStore) -> List[ValidationIssue]:
        raw = store.get(definition.id)
        label = definition.label or definition.id

        if is_blank(raw):
            if self._is_required(definition.constraints, store, definition.id):
                return [_issue(definition.id, f"{label} is required", IssueCode.REQUIRED)]
            return []

        if definition.is_row_group:
            return self._check_rows(definition, raw, store)

        return self._check_value(definition.id, label, definition.kind, definition.constraints, raw)

    def _check_value(
        self,
        field_id: str,
        label: str,
        kind: FieldKind,
        constraints: FieldConstraints,
        raw: Any,
        group_id: Optional[str] = None,
        row_id: Optional[str] = None,
    ) -> List[ValidationIssue]:
        def issue(message: str, code: IssueCode) -> List[ValidationIssue]:
            return [_issue(field_id, message, code, group_id=group_id, row_id=row_id)]

        if kind in (FieldKind.CURRENCY, FieldKind.PERCENTAGE):
            number = parse_currency(raw) if kind == FieldKind.CURRENCY else parse_percentage(raw)
            if number is None:
                noun = "amount" if kind == FieldKind.CURRENCY else "percentage"
                return issue(f"{label} must be a valid {noun}", IssueCode.PATTERN)
            if constraints.min_value is not None and number < constraints.min_value:
                return issue(f"{label} must be at least {constraints.min_value:,.2f}", IssueCode.RANGE)
            if constraints.max_value is not None and number > constraints.max_value:
                return issue(f"{label} must be at most {constraints.max_value:,.2f}", IssueCode.RANGE)
            return []

        if kind == FieldKind.DATE:
            parsed = parse_iso_date(raw)
            if parsed is None:
                return issue(f"{label} must be a date in YYYY-MM-DD format", IssueCode.PATTERN)
            if constraints.not_in_future and parsed > self._today():
                return issue(f"{label} cannot be in the future", IssueCode.RANGE)
            return []

        if kind == FieldKind.BOOLEAN:
            if parse_boolean(raw) is None:
                return issue(f"{label} must be true or false", IssueCode.PATTERN)
            return []

        if kind == FieldKind.ENUM:
            if constraints.choices and raw not in constraints.choices:
                return issue(
                    f"{label} must be one of: {', '.join(constraints.choices)}",
                    IssueCode.PATTERN,
                )
            return []

        # text and signature
        if not isinstance(raw, (str, int, float)) or isinstance(raw, bool):
            return issue(f"{label} must be text", IssueCode.PATTERN)
        text = str(raw)
        if constraints.max_length is not None and len(text) > constraints.max_length:
            return issue(
                f"{label} must be at most {constraints.max_length} characters",
                IssueCode.RANGE,
            )
        if constraints.pattern and not re.fullmatch(constraints.pattern, text):
            return issue(f"{label} has an invalid format", IssueCode.PATTERN)
        return []

    def _check_rows(self, definition: FieldDefinition, raw: Any, store: ValueStore) -> List[ValidationIssue]:
        label = definition.label or definition.id
        if not isinstance(raw, list):
            return [_issue(definition.id, f"{label} must be a list of rows", IssueCode.PATTERN)]

        issues: List[ValidationIssue] = []
        for index, row in enumerate(raw):
            if not isinstance(row, dict):
                issues.append(_issue(
                    definition.id, f"{label} row {index + 1} is malformed", IssueCode.PATTERN
                ))
                continue
            row_id = _row_id(row, index)
            # column predicates see the row's own cells first, then form fields
            row_values = ChainMap(row, store)
            for column in definition.columns:
                value = row.get(column.id)
                column_label = column.label or column.id
                if is_blank(value):
                    if self._is_required(column.constraints, row_values, f"{definition.id}.{column.id}"):
                        issues.append(_issue(
                            column.id, f"{column_label} is required", IssueCode.REQUIRED,
                            group_id=definition.id, row_id=row_id,
                        ))
                    continue
                issues.extend(self._check_value(
                    column.id, column_label, column.kind, column.constraints, value,
                    group_id=definition.id, row_id=row_id,
                ))
        return issues

    # ------------------------------------------------------------------
    # Rule 2: paired entry
    # ------------------------------------------------------------------

    def _check_pairs(self, definition: FieldDefinition, raw: Any) -> List[ValidationIssue]:
        if not isinstance(raw, list):
            return []

        issues: List[ValidationIssue] = []
        for index, row in enumerate(raw):
            if not isinstance(row, dict):
                continue
            for left, right in definition.pairs:
                left_set = not is_blank(row.get(left))
                right_set = not is_blank(row.get(right))
                if left_set == right_set:
                    continue
                missing, present = (right, left) if left_set else (left, right)
                missing_label = definition.column(missing).label or missing
                present_label = definition.column(present).label or present
                issues.append(_issue(
                    missing,
                    f"{missing_label} is required when {present_label} is provided",
                    IssueCode.PAIRED_FIELD_MISSING,
                    group_id=definition.id,
                    row_id=_row_id(row, index),
                ))
        return issues

    # ------------------------------------------------------------------
    # Rule 3: total reconciliation
    # ------------------------------------------------------------------

    def _check_totals(self, active: List[FieldDefinition], store: ValueStore) -> List[ValidationIssue]:
        overridden = [d for d in active if d.is_derived and store.is_manual_override(d.id)]
        if not overridden:
            return []

        derived = self._derivation.evaluate(store).values
        issues: List[ValidationIssue] = []
        for definition in overridden:
            value = derived[definition.id]
            if value.entered is None:
                continue
            delta = money(abs(value.entered - value.computed))
            tolerance = self.tolerance_for(definition)
            if delta <= Decimal(str(tolerance)):
                continue
            label = definition.label or definition.id
            issues.append(ValidationIssue(
                field_id=definition.id,
                severity=Severity.WARNING,
                message=(
                    f"{label} entered as {format_currency(value.entered)} differs from the "
                    f"calculated {format_currency(value.computed)} by {format_currency(float(delta))}"
                ),
                code=IssueCode.TOTAL_MISMATCH,
                delta=float(delta),
                computed=value.computed,
                entered=value.entered,
            ))
        return issues

    # ------------------------------------------------------------------
    # Rule 4: signature sets
    # ------------------------------------------------------------------

    def _check_signature_block(self, block: SignatureBlock, store: ValueStore) -> List[ValidationIssue]:
        if not all(self._visibility.is_active(m, store) for m in block.members):
            return []

        required = block.required or self._holds(block.required_if, store, block.role)
        present = [not is_blank(store.get(m)) for m in block.members]
        if all(present) or not (required or any(present)):
            return []

        missing = block.members[present.index(False)]
        definition = self._schema.field(missing)
        label = definition.label or missing
        return [_issue(
            missing,
            f"{label} is required to complete the {block.role.replace('_', ' ')} signature",
            IssueCode.SIGNATURE_SET_INCOMPLETE,
        )]


def _issue(
    field_id: str,
    message: str,
    code: IssueCode,
    group_id: Optional[str] = None,
    row_id: Optional[str] = None,
) -> ValidationIssue:
    return ValidationIssue(
        field_id=field_id,
        severity=Severity.ERROR,
        message=message,
        code=code,
        group_id=group_id,
        row_id=row_id,
    )


def _row_id(row: Dict[str, Any], index: int) -> str:
    row_id = row.get("row_id")
    return str(row_id) if not is_blank(row_id) else f"#{index}"
