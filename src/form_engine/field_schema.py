"""
Field Schema.

Static description of a multi-step form: every field's kind, constraints,
visibility predicate and (for derived totals) its formula, plus the step
layout, signature blocks and the explicit id lookup table used to translate
between engine ids and external document ids.

A ``FormSchema`` is built once at process start and never mutated. All
structural checks happen in the constructor, so a schema that exists is
known to be consistent:

- field ids (including row-group column ids) are unique
- every field belongs to exactly one step
- every formula, predicate and signature block references known fields
- the derivation graph is acyclic (topological order computed here)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from .conditions import Predicate, compile_condition
from .errors import DerivationCycleError, SchemaError

logger = logging.getLogger(__name__)

DeriveFn = Callable[[Mapping[str, float]], float]


class FieldKind(str, Enum):
    """Kinds of form fields."""
    TEXT = "text"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DATE = "date"
    BOOLEAN = "boolean"
    SIGNATURE = "signature"
    ENUM = "enum"
    REPEATABLE_ROW_GROUP = "repeatable_row_group"


class Reconciliation(str, Enum):
    """Which default tolerance applies to a derived field."""
    SUBTOTAL = "subtotal"
    CROSS_CHECK = "cross_check"


@dataclass(frozen=True)
class FieldConstraints:
    """Validation constraints for a field or row-group column."""
    required: bool = False
    required_if: Optional[Predicate] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    choices: Tuple[str, ...] = ()
    not_in_future: bool = False


@dataclass(frozen=True)
class ColumnDefinition:
    """One column of a repeatable row group."""
    id: str
    kind: FieldKind
    label: str = ""
    constraints: FieldConstraints = field(default_factory=FieldConstraints)


@dataclass(frozen=True)
class FieldDefinition:
    """Immutable descriptor of a single form field."""
    id: str
    kind: FieldKind
    label: str = ""
    step: Optional[int] = None
    constraints: FieldConstraints = field(default_factory=FieldConstraints)
    visibility: Optional[Predicate] = None

    # Derived fields only
    depends_on: FrozenSet[str] = frozenset()
    derive_fn: Optional[DeriveFn] = None
    reconciliation: Reconciliation = Reconciliation.SUBTOTAL
    tolerance: Optional[float] = None

    # Repeatable row groups only
    columns: Tuple[ColumnDefinition, ...] = ()
    label_column: Optional[str] = None
    amount_column: Optional[str] = None
    pairs: Tuple[Tuple[str, str], ...] = ()

    # Projection metadata
    external_id: Optional[str] = None
    category: Optional[str] = None

    @property
    def is_derived(self) -> bool:
        return self.derive_fn is not None

    @property
    def is_row_group(self) -> bool:
        return self.kind == FieldKind.REPEATABLE_ROW_GROUP

    def column(self, column_id: str) -> ColumnDefinition:
        for column in self.columns:
            if column.id == column_id:
                return column
        raise KeyError(column_id)


@dataclass(frozen=True)
class DerivationNode:
    """A node of the derivation graph."""
    field_id: str
    depends_on: FrozenSet[str]
    derive_fn: DeriveFn


@dataclass(frozen=True)
class SignatureBlock:
    """A (signature, printed name, date) triple signed by one role."""
    role: str
    signature_field: str
    printed_name_field: str
    date_field: str
    required: bool = False
    required_if: Optional[Predicate] = None

    @property
    def members(self) -> Tuple[str, str, str]:
        """Member ids in the order incompleteness is reported."""
        return (self.signature_field, self.printed_name_field, self.date_field)


@dataclass(frozen=True)
class StepDefinition:
    """One independently persistable page of the form."""
    number: int
    title: str
    field_ids: Tuple[str, ...]
    required_for_submission: bool = True


class FieldIdMap:
    """Bidirectional lookup between engine field ids and external ids.

    External ids are the identifiers used by the schema document, the
    rendering layer and persisted financial rows. Fields without an
    external id map to themselves.
    """

    def __init__(self, pairs: Iterable[Tuple[str, str]]):
        self._to_external: Dict[str, str] = {}
        self._to_internal: Dict[str, str] = {}
        for internal, external in pairs:
            if external in self._to_internal:
                raise SchemaError(
                    f"External id '{external}' is used by both "
                    f"'{self._to_internal[external]}' and '{internal}'",
                    [self._to_internal[external], internal],
                )
            self._to_external[internal] = external
            self._to_internal[external] = internal

    def to_external(self, field_id: str) -> str:
        return self._to_external.get(field_id, field_id)

    def to_internal(self, external_id: str) -> str:
        return self._to_internal.get(external_id, external_id)

    def translate_payload(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Rewrite external keys to engine ids; unknown keys pass through unchanged."""
        return {self.to_internal(key): value for key, value in payload.items()}

    def __len__(self) -> int:
        return len(self._to_external)


class FormSchema:
    """
    Complete, validated schema of one form.

    Args:
        form_id: Stable identifier of the form.
        title: Display title.
        fields: Field definitions; ``step`` is filled in from ``steps``.
        steps: Step layout. Every field must appear in exactly one step.
        signature_blocks: Signature triples validated as a unit.
        version: Schema document version.

    Raises:
        SchemaError: On duplicate ids, dangling references or a derivation cycle.
    """

    def __init__(
        self,
        form_id: str,
        title: str,
        fields: Sequence[FieldDefinition],
        steps: Sequence[StepDefinition],
        signature_blocks: Sequence[SignatureBlock] = (),
        version: str = "1",
    ):
        self.form_id = form_id
        self.title = title
        self.version = version

        declared: Dict[str, FieldDefinition] = {}
        column_owner: Dict[str, str] = {}
        for definition in fields:
            if definition.id in declared or definition.id in column_owner:
                raise SchemaError(f"Duplicate field id '{definition.id}'", [definition.id])
            declared[definition.id] = definition
            for column in definition.columns:
                if column.id in declared or column.id in column_owner:
                    raise SchemaError(f"Duplicate field id '{column.id}'", [column.id])
                column_owner[column.id] = definition.id

        self._steps: Dict[int, StepDefinition] = {}
        for step in steps:
            if step.number in self._steps:
                raise SchemaError(f"Duplicate step number {step.number}")
            self._steps[step.number] = step

        step_of: Dict[str, int] = {}
        for step in self._steps.values():
            for field_id in step.field_ids:
                if field_id not in declared:
                    raise SchemaError(f"Step {step.number} references unknown field '{field_id}'", [field_id])
                if field_id in step_of:
                    raise SchemaError(
                        f"Field '{field_id}' is listed in steps {step_of[field_id]} and {step.number}",
                        [field_id],
                    )
                step_of[field_id] = step.number

        self._fields: Dict[str, FieldDefinition] = {}
        for definition in declared.values():
            if definition.id not in step_of:
                raise SchemaError(f"Field '{definition.id}' is not part of any step", [definition.id])
            self._fields[definition.id] = replace(definition, step=step_of[definition.id])

        self._signature_blocks: Tuple[SignatureBlock, ...] = tuple(signature_blocks)
        self._check_references()

        self.id_map = FieldIdMap(
            (f.id, f.external_id) for f in self._fields.values() if f.external_id
        )
        self._visibility_dependents = self._index_predicate_reads()
        self.derivation_order: Tuple[DerivationNode, ...] = self._topological_order()

        logger.debug(
            f"Schema '{form_id}' built: {len(self._fields)} fields, "
            f"{len(self._steps)} steps, {len(self.derivation_order)} derived"
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def fields(self) -> Tuple[FieldDefinition, ...]:
        return tuple(self._fields.values())

    @property
    def steps(self) -> Tuple[StepDefinition, ...]:
        return tuple(sorted(self._steps.values(), key=lambda s: s.number))

    @property
    def signature_blocks(self) -> Tuple[SignatureBlock, ...]:
        return self._signature_blocks

    def field(self, field_id: str) -> FieldDefinition:
        return self._fields[field_id]

    def has_field(self, field_id: str) -> bool:
        return field_id in self._fields

    def step(self, number: int) -> StepDefinition:
        return self._steps[number]

    def has_step(self, number: int) -> bool:
        return number in self._steps

    def fields_for_step(self, number: int) -> Tuple[FieldDefinition, ...]:
        return tuple(self._fields[fid] for fid in self._steps[number].field_ids)

    def derived_fields(self) -> Tuple[FieldDefinition, ...]:
        return tuple(f for f in self._fields.values() if f.is_derived)

    def visibility_dependents(self, field_id: str) -> FrozenSet[str]:
        """Fields whose visibility predicate reads ``field_id``."""
        return self._visibility_dependents.get(field_id, frozenset())

    def signature_block_for(self, field_id: str) -> Optional[SignatureBlock]:
        for block in self._signature_blocks:
            if field_id in block.members:
                return block
        return None

    # ------------------------------------------------------------------
    # Build-time checks
    # ------------------------------------------------------------------

    def _check_references(self) -> None:
        def require(field_id: str, context: str) -> None:
            if field_id not in self._fields:
                raise SchemaError(f"{context} references unknown field '{field_id}'", [field_id])

        for definition in self._fields.values():
            for dep in definition.depends_on:
                require(dep, f"Formula of '{definition.id}'")
            for predicate, label in (
                (definition.visibility, "Visibility of"),
                (definition.constraints.required_if, "Required-if of"),
            ):
                if predicate is not None:
                    for read in predicate.reads:
                        require(read, f"{label} '{definition.id}'")
            if definition.is_row_group:
                column_ids = {c.id for c in definition.columns}
                for ref in filter(None, (definition.amount_column, definition.label_column)):
                    if ref not in column_ids:
                        raise SchemaError(
                            f"Row group '{definition.id}' has no column '{ref}'", [definition.id]
                        )
                for left, right in definition.pairs:
                    if left not in column_ids or right not in column_ids:
                        raise SchemaError(
                            f"Row group '{definition.id}' pairs unknown columns {left}/{right}",
                            [definition.id],
                        )
                for column in definition.columns:
                    predicate = column.constraints.required_if
                    if predicate is None:
                        continue
                    for read in predicate.reads - column_ids:
                        require(read, f"Required-if of column '{definition.id}.{column.id}'")

        for block in self._signature_blocks:
            for member in block.members:
                require(member, f"Signature block '{block.role}'")
            if block.required_if is not None:
                for read in block.required_if.reads:
                    require(read, f"Signature block '{block.role}'")

    def _index_predicate_reads(self) -> Dict[str, FrozenSet[str]]:
        index: Dict[str, Set[str]] = {}
        for definition in self._fields.values():
            if definition.visibility is None:
                continue
            for read in definition.visibility.reads:
                index.setdefault(read, set()).add(definition.id)
        return {key: frozenset(value) for key, value in index.items()}

    def _topological_order(self) -> Tuple[DerivationNode, ...]:
        """Order derived fields so every node follows its derived dependencies.

        Kahn's algorithm; declaration order breaks ties so the walk is
        deterministic.

        Raises:
            DerivationCycleError: The derived fields do not form a DAG.
        """
        derived = [f for f in self._fields.values() if f.is_derived]
        derived_ids = {f.id for f in derived}

        pending: Dict[str, Set[str]] = {
            f.id: {dep for dep in f.depends_on if dep in derived_ids} for f in derived
        }
        order: List[DerivationNode] = []

        while pending:
            ready = [f for f in derived if f.id in pending and not pending[f.id]]
            if not ready:
                cycle = sorted(pending)
                raise DerivationCycleError(
                    f"Derivation cycle among: {', '.join(cycle)}", cycle
                )
            for definition in ready:
                del pending[definition.id]
                order.append(
                    DerivationNode(
                        field_id=definition.id,
                        depends_on=definition.depends_on,
                        derive_fn=definition.derive_fn,
                    )
                )
                for deps in pending.values():
                    deps.discard(definition.id)

        return tuple(order)


# ----------------------------------------------------------------------
# Declarative document loading
# ----------------------------------------------------------------------

def compile_formula(field_id: str, formula: Mapping[str, Any]) -> Tuple[FrozenSet[str], DeriveFn]:
    """Compile ``{"op": "sum"|"difference", "of": [...]}`` into a pure function.

    Raises:
        SchemaError: Unknown operator or empty operand list.
    """
    op = formula.get("op")
    operands = formula.get("of")
    if not isinstance(operands, list) or not operands:
        raise SchemaError(f"Formula of '{field_id}' needs a non-empty 'of' list", [field_id])
    terms = tuple(str(o) for o in operands)

    if op == "sum":
        def derive(inputs: Mapping[str, float]) -> float:
            return sum(inputs[t] for t in terms)
    elif op == "difference":
        head, rest = terms[0], terms[1:]

        def derive(inputs: Mapping[str, float]) -> float:
            return inputs[head] - sum(inputs[t] for t in rest)
    else:
        raise SchemaError(f"Formula of '{field_id}' has unknown op '{op}'", [field_id])

    return frozenset(terms), derive


_CONSTRAINT_KEYS = {
    "min": "min_value",
    "max": "max_value",
    "max_length": "max_length",
    "pattern": "pattern",
    "not_in_future": "not_in_future",
}


def _parse_kind(raw: Any, owner: str) -> FieldKind:
    try:
        return FieldKind(raw)
    except ValueError:
        raise SchemaError(f"'{owner}' has unknown kind '{raw}'", [owner]) from None


def _parse_reconciliation(raw: Any, owner: str) -> Reconciliation:
    try:
        return Reconciliation(raw)
    except ValueError:
        raise SchemaError(f"'{owner}' has unknown reconciliation '{raw}'", [owner]) from None


def _parse_constraints(
    raw: Mapping[str, Any], kind: FieldKind, defaults: Mapping[str, Mapping[str, Any]]
) -> FieldConstraints:
    merged: Dict[str, Any] = dict(defaults.get(kind.value, {}))
    merged.update({k: v for k, v in raw.items() if k in _CONSTRAINT_KEYS or k in ("required", "required_if", "choices")})

    values: Dict[str, Any] = {
        _CONSTRAINT_KEYS[key]: merged[key] for key in _CONSTRAINT_KEYS if key in merged
    }
    values["required"] = bool(merged.get("required", False))
    values["required_if"] = compile_condition(merged.get("required_if"))
    values["choices"] = tuple(merged.get("choices") or ())
    return FieldConstraints(**values)


def _parse_field(
    raw: Mapping[str, Any],
    defaults: Mapping[str, Mapping[str, Any]],
    section_category: Optional[str],
) -> FieldDefinition:
    field_id = raw.get("id")
    if not field_id:
        raise SchemaError(f"Field without id: {raw}")
    kind = _parse_kind(raw.get("kind"), field_id)

    depends_on: FrozenSet[str] = frozenset()
    derive_fn = None
    if "derive" in raw:
        depends_on, derive_fn = compile_formula(field_id, raw["derive"])

    columns = tuple(
        ColumnDefinition(
            id=col["id"],
            kind=_parse_kind(col.get("kind"), col.get("id", field_id)),
            label=col.get("label", ""),
            constraints=_parse_constraints(col, _parse_kind(col.get("kind"), col["id"]), defaults),
        )
        for col in raw.get("columns", [])
    )

    tolerance = raw.get("tolerance")
    return FieldDefinition(
        id=field_id,
        kind=kind,
        label=raw.get("label", ""),
        constraints=_parse_constraints(raw, kind, defaults),
        visibility=compile_condition(raw.get("show_if")),
        depends_on=depends_on,
        derive_fn=derive_fn,
        reconciliation=_parse_reconciliation(raw.get("reconciliation", "subtotal"), field_id),
        tolerance=float(tolerance) if tolerance is not None else None,
        columns=columns,
        label_column=raw.get("label_column"),
        amount_column=raw.get("amount_column"),
        pairs=tuple(tuple(pair) for pair in raw.get("pairs", [])),
        external_id=raw.get("external_id"),
        category=raw.get("category", section_category),
    )


def schema_from_document(document: Mapping[str, Any]) -> FormSchema:
    """Build a FormSchema from a parsed schema document.

    Raises:
        SchemaError: The document is structurally invalid.
    """
    try:
        form_id = document["form_id"]
        raw_steps = document["steps"]
    except (KeyError, TypeError) as e:
        raise SchemaError(f"Schema document is missing {e}") from e

    defaults = document.get("defaults", {})
    fields: List[FieldDefinition] = []
    steps: List[StepDefinition] = []

    for raw_step in raw_steps:
        step_field_ids: List[str] = []
        sections = raw_step.get("sections") or [{"fields": raw_step.get("fields", [])}]
        for section in sections:
            for raw_field in section.get("fields", []):
                definition = _parse_field(raw_field, defaults, section.get("category"))
                fields.append(definition)
                step_field_ids.append(definition.id)
        steps.append(
            StepDefinition(
                number=int(raw_step["number"]),
                title=raw_step.get("title", ""),
                field_ids=tuple(step_field_ids),
                required_for_submission=bool(raw_step.get("required_for_submission", True)),
            )
        )

    blocks = [
        SignatureBlock(
            role=raw["role"],
            signature_field=raw["signature"],
            printed_name_field=raw["printed_name"],
            date_field=raw["date"],
            required=bool(raw.get("required", False)),
            required_if=compile_condition(raw.get("required_if")),
        )
        for raw in document.get("signature_blocks", [])
    ]

    return FormSchema(
        form_id=form_id,
        title=document.get("title", form_id),
        fields=fields,
        steps=steps,
        signature_blocks=blocks,
        version=str(document.get("version", "1")),
    )
