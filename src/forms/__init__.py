"""Form schema registry, the bundled form documents and the statement helpers."""

from .registry import (
    FormSchemaLoader,
    SCHEMA_DIR,
    clear_schema_cache,
    get_schema,
    get_schema_loader,
)
from .statement import (
    NET_WORTH_BEFORE_SECURITIES,
    NET_WORTH_FINAL,
    POTENTIAL_LIQUIDITY,
    SIGNATURE_ROLES,
    STATEMENT_FORM_ID,
    get_statement_schema,
    is_accredited_investor,
)

__all__ = [
    "FormSchemaLoader",
    "SCHEMA_DIR",
    "clear_schema_cache",
    "get_schema",
    "get_schema_loader",
    "NET_WORTH_BEFORE_SECURITIES",
    "NET_WORTH_FINAL",
    "POTENTIAL_LIQUIDITY",
    "SIGNATURE_ROLES",
    "STATEMENT_FORM_ID",
    "get_statement_schema",
    "is_accredited_investor",
]
