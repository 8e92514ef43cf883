"""Schema errors.

Schema misconfiguration is the only hard stop inside the engine. It is
raised while a schema is being built and must prevent the engine from
starting; per-request problems are reported as validation issues instead.
"""

from typing import List, Optional


class SchemaError(Exception):
    """Raised when a form schema is invalid (cycle, duplicate id, bad reference)."""

    def __init__(self, message: str, field_ids: Optional[List[str]] = None):
        self.field_ids = list(field_ids or [])
        super().__init__(message)


class DerivationCycleError(SchemaError):
    """Raised when derived fields depend on each other in a cycle."""


class PayloadError(ValueError):
    """Raised when a step payload does not fit the step it is saved to."""

    def __init__(self, message: str, field_id: Optional[str] = None):
        self.field_id = field_id
        super().__init__(message)
