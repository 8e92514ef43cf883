"""
Derivation Engine.

Recomputes derived totals (subtotals, net worth, liquidity) from leaf
inputs. The walk order is fixed at schema load; each node is evaluated once
per recompute and reads only upstream values that are already resolved.

A derived dependency always contributes its freshly computed value, never a
manual override typed into it. Computed values are returned in a side map
and never written back into the value store.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .field_schema import FieldDefinition, FieldKind, FormSchema
from .normalization import parse_currency, parse_percentage, round_cents
from .value_store import ValueStore
from .visibility import VisibilityResolver

logger = logging.getLogger(__name__)


class DerivationState(str, Enum):
    """How the displayed value of a derived field was produced."""
    AUTO = "auto"
    OVERRIDDEN = "overridden"


@dataclass(frozen=True)
class DerivedValue:
    field_id: str
    computed: float
    state: DerivationState
    entered: Optional[float] = None

    @property
    def display(self) -> float:
        """Value shown to the user: the override when readable, else the computed value."""
        if self.state == DerivationState.OVERRIDDEN and self.entered is not None:
            return self.entered
        return self.computed


@dataclass
class DerivationResult:
    """Outcome of one recompute pass."""
    values: Dict[str, DerivedValue] = field(default_factory=dict)

    @property
    def computed(self) -> Dict[str, float]:
        return {fid: v.computed for fid, v in self.values.items()}

    def display_values(self) -> Dict[str, float]:
        return {fid: v.display for fid, v in self.values.items()}

    def overridden(self) -> Dict[str, DerivedValue]:
        return {
            fid: v for fid, v in self.values.items()
            if v.state == DerivationState.OVERRIDDEN
        }


def leaf_number(definition: FieldDefinition, raw: Any) -> float:
    """Numeric contribution of a leaf value. Blank or unreadable input is 0."""
    if definition.kind == FieldKind.CURRENCY:
        return parse_currency(raw) or 0.0
    if definition.kind == FieldKind.PERCENTAGE:
        return parse_percentage(raw) or 0.0
    if definition.is_row_group and definition.amount_column:
        if not isinstance(raw, list):
            return 0.0
        total = 0.0
        for row in raw:
            if isinstance(row, dict):
                total += parse_currency(row.get(definition.amount_column)) or 0.0
        return round_cents(total)
    return 0.0


class DerivationEngine:
    """Evaluates the schema's derivation graph against a value store."""

    def __init__(self, schema: FormSchema, visibility: Optional[VisibilityResolver] = None):
        self._schema = schema
        self._visibility = visibility or VisibilityResolver(schema)

    def recompute(self, store: ValueStore) -> Dict[str, float]:
        """Computed value of every derived field, rounded to cents."""
        return self.evaluate(store).computed

    def evaluate(self, store: ValueStore) -> DerivationResult:
        """Recompute every derived field and classify it as auto or overridden."""
        computed: Dict[str, float] = {}
        result = DerivationResult()

        for node in self._schema.derivation_order:
            inputs = {dep: self._input(dep, store, computed) for dep in node.depends_on}
            value = round_cents(node.derive_fn(inputs))
            computed[node.field_id] = value

            if store.is_manual_override(node.field_id):
                result.values[node.field_id] = DerivedValue(
                    field_id=node.field_id,
                    computed=value,
                    state=DerivationState.OVERRIDDEN,
                    entered=parse_currency(store.get(node.field_id)),
                )
            else:
                result.values[node.field_id] = DerivedValue(
                    field_id=node.field_id,
                    computed=value,
                    state=DerivationState.AUTO,
                )

        logger.debug(f"Recomputed {len(computed)} derived fields for '{self._schema.form_id}'")
        return result

    def _input(self, field_id: str, store: ValueStore, computed: Dict[str, float]) -> float:
        if field_id in computed:
            return computed[field_id]
        if not self._visibility.is_active(field_id, store):
            return 0.0
        return leaf_number(self._schema.field(field_id), store.get(field_id))
