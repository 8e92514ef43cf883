"""
Step payloads and persistence projections.

``normalize_step_payload`` checks that an incoming step payload only
touches fields of that step and canonicalizes repeatable rows by their
``row_id``. A retried payload therefore produces the same row set instead
of appending duplicates.

``build_financial_rows`` flattens the numeric fields into category rows
for downstream collaborators (reporting, PDF generation).
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional

from .derivation import DerivationResult, leaf_number
from .errors import PayloadError
from .field_schema import FieldDefinition, FieldKind, FormSchema
from .normalization import is_blank, parse_currency
from .value_store import ValueStore
from .visibility import VisibilityResolver


def normalize_step_payload(schema: FormSchema, step: int, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate external ids and canonicalize rows for one step.

    Raises:
        PayloadError: Unknown step, a field outside the step, or a malformed row.
    """
    if not schema.has_step(step):
        raise PayloadError(f"Unknown step {step}")
    if not isinstance(payload, Mapping):
        raise PayloadError("Step payload must be a mapping of field ids to values")

    allowed = set(schema.step(step).field_ids)
    normalized: Dict[str, Any] = {}

    for field_id, value in schema.id_map.translate_payload(payload).items():
        if field_id not in allowed:
            raise PayloadError(f"Field '{field_id}' is not part of step {step}", field_id)
        definition = schema.field(field_id)
        if definition.is_row_group and not is_blank(value):
            value = _canonical_rows(definition, value)
        normalized[field_id] = value

    return normalized


def _canonical_rows(definition: FieldDefinition, rows: Any) -> List[Dict[str, Any]]:
    if not isinstance(rows, list):
        raise PayloadError(f"'{definition.id}' must be a list of rows", definition.id)

    by_id: Dict[str, Dict[str, Any]] = {}
    known = {c.id for c in definition.columns}
    for row in rows:
        if not isinstance(row, Mapping):
            raise PayloadError(f"Rows of '{definition.id}' must be mappings", definition.id)
        row_id = row.get("row_id")
        if is_blank(row_id):
            raise PayloadError(f"Every row of '{definition.id}' needs a row_id", definition.id)
        unknown = set(row) - known - {"row_id"}
        if unknown:
            raise PayloadError(
                f"Rows of '{definition.id}' have unknown columns: {', '.join(sorted(unknown))}",
                definition.id,
            )
        # Last occurrence of a row id wins, first occurrence keeps its position.
        by_id[str(row_id)] = {**dict(row), "row_id": str(row_id)}

    return list(by_id.values())


@dataclass(frozen=True)
class FinancialRow:
    """One line of the financial statement as handed to downstream collaborators."""
    category: str
    row_key: str
    label: str
    value: float
    is_total: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_financial_rows(
    schema: FormSchema,
    store: ValueStore,
    derived: DerivationResult,
    visibility: Optional[VisibilityResolver] = None,
) -> List[FinancialRow]:
    """Project categorized numeric fields into financial rows.

    Totals are always emitted with their displayed value. Leaves and
    repeatable rows are emitted only when non-zero; hidden fields are skipped.
    """
    if visibility is None:
        resolver = VisibilityResolver(schema)
        try:
            return build_financial_rows(schema, store, derived, resolver)
        finally:
            resolver.release()

    display = derived.display_values()
    rows: List[FinancialRow] = []

    for definition in schema.fields:
        if not definition.category or not visibility.is_active(definition.id, store):
            continue
        row_key = schema.id_map.to_external(definition.id)

        if definition.is_derived:
            rows.append(FinancialRow(
                category=definition.category,
                row_key=row_key,
                label=definition.label,
                value=display[definition.id],
                is_total=True,
            ))
        elif definition.is_row_group:
            rows.extend(_group_rows(definition, row_key, store.get(definition.id)))
        elif definition.kind == FieldKind.CURRENCY:
            value = leaf_number(definition, store.get(definition.id))
            if value != 0:
                rows.append(FinancialRow(
                    category=definition.category,
                    row_key=row_key,
                    label=definition.label,
                    value=value,
                ))

    return rows


def _group_rows(definition: FieldDefinition, row_key: str, raw: Any) -> List[FinancialRow]:
    if not isinstance(raw, list) or not definition.amount_column:
        return []

    rows = []
    for row in raw:
        if not isinstance(row, dict):
            continue
        value = parse_currency(row.get(definition.amount_column)) or 0.0
        if value == 0:
            continue
        label = row.get(definition.label_column) if definition.label_column else None
        rows.append(FinancialRow(
            category=definition.category,
            row_key=f"{row_key}:{row.get('row_id')}",
            label=str(label).strip() if not is_blank(label) else definition.label,
            value=value,
        ))
    return rows
