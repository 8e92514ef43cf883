"""
Form session.

Wires the value store, visibility resolver, derivation engine and
validation engine together for one in-progress form. A session owns its
store exclusively and is never shared between editors.

Example:
    session = FormSession(schema)
    session.set_value("lnqa_cash", "1,000")
    session.set_value("lnqa_brokerage_nonmanaged", 500)
    session.computed_values()["lnqa_total_liquid_assets"]   # 1500.0
    session.validate_step(1)
"""

import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from .derivation import DerivationEngine, DerivationResult
from .field_schema import FormSchema
from .payloads import FinancialRow, build_financial_rows
from .validation import ValidationEngine, ValidationIssue, ValidationScope
from .value_store import ValueStore
from .visibility import VisibilityResolver

if TYPE_CHECKING:
    from config.settings import EngineSettings

logger = logging.getLogger(__name__)


class FormSession:
    """One user's editing session over a form schema."""

    def __init__(
        self,
        schema: FormSchema,
        values: Optional[Mapping[str, Any]] = None,
        subtotal_tolerance: Optional[float] = None,
        cross_check_tolerance: Optional[float] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.schema = schema
        self.store = ValueStore(schema)
        self.visibility = VisibilityResolver(schema)
        self.derivation = DerivationEngine(schema, self.visibility)

        tolerances = {}
        if subtotal_tolerance is not None:
            tolerances["subtotal_tolerance"] = subtotal_tolerance
        if cross_check_tolerance is not None:
            tolerances["cross_check_tolerance"] = cross_check_tolerance
        if today is not None:
            tolerances["today"] = today
        self.validation = ValidationEngine(
            schema, visibility=self.visibility, derivation=self.derivation, **tolerances
        )

        if values:
            self.store.update(values)

    @classmethod
    def from_settings(
        cls,
        schema: FormSchema,
        values: Optional[Mapping[str, Any]] = None,
        settings: Optional["EngineSettings"] = None,
    ) -> "FormSession":
        """Build a session using the configured tolerances."""
        if settings is None:
            from config.settings import get_settings
            settings = get_settings()
        return cls(
            schema,
            values,
            subtotal_tolerance=settings.subtotal_tolerance,
            cross_check_tolerance=settings.cross_check_tolerance,
        )

    # Input -------------------------------------------------------------

    def set_value(self, field_id: str, value: Any) -> None:
        self.store.set(field_id, value)

    def update(self, values: Mapping[str, Any]) -> None:
        self.store.update(values)

    def is_active(self, field_id: str) -> bool:
        return self.visibility.is_active(field_id, self.store)

    # Derived values ----------------------------------------------------

    def recompute(self) -> DerivationResult:
        return self.derivation.evaluate(self.store)

    def computed_values(self) -> Dict[str, float]:
        return self.derivation.recompute(self.store)

    def display_values(self) -> Dict[str, Any]:
        """Raw values with every derived field showing its displayed total."""
        values = self.store.snapshot()
        values.update(self.recompute().display_values())
        return values

    # Validation --------------------------------------------------------

    def validate(self, scope: Optional[ValidationScope] = None) -> List[ValidationIssue]:
        return self.validation.validate(self.store, scope)

    def validate_field(self, field_id: str) -> List[ValidationIssue]:
        return self.validate(ValidationScope.for_field(field_id))

    def validate_step(self, step: int) -> List[ValidationIssue]:
        return self.validate(ValidationScope.for_step(step))

    def validate_form(self) -> List[ValidationIssue]:
        return self.validate(ValidationScope.full_form())

    # Projections -------------------------------------------------------

    def financial_rows(self) -> List[FinancialRow]:
        return build_financial_rows(self.schema, self.store, self.recompute(), self.visibility)
