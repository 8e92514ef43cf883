"""
Form Schema Registry.

Loads declarative form schemas (YAML, or JSON since it is a YAML subset)
from the schema directory and builds validated ``FormSchema`` objects.

Schemas are loaded once per process. A broken document raises
``SchemaError`` at load time so the service refuses to start instead of
failing on the first request.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from form_engine import FormSchema, SchemaError, schema_from_document

logger = logging.getLogger(__name__)

# Default schema directory
SCHEMA_DIR = Path(__file__).parent / "schemas"

SCHEMA_SUFFIXES = (".yaml", ".yml", ".json")


class FormSchemaLoader:
    """
    Loads and caches form schemas from a directory.

    File names are ``<form_id>.yaml`` (``.yml`` and ``.json`` also work).
    """

    def __init__(self, schema_dir: Optional[Path] = None, currency_bounds: Optional[Dict[str, float]] = None):
        """
        Initialize the loader.

        Args:
            schema_dir: Directory containing schema documents.
                        Defaults to src/forms/schemas/
            currency_bounds: ``{"min": ..., "max": ...}`` for currency fields.
                        Replaces the document's currency defaults; a
                        bound set on the field itself still wins.
        """
        self.schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.currency_bounds = currency_bounds
        self._schemas: Dict[str, FormSchema] = {}

    def available_forms(self) -> List[str]:
        """Form ids with a schema document in the directory."""
        if not self.schema_dir.is_dir():
            return []
        return sorted(
            path.stem for path in self.schema_dir.iterdir()
            if path.suffix in SCHEMA_SUFFIXES
        )

    def load(self, form_id: str) -> FormSchema:
        """
        Load the schema for a form.

        Raises:
            SchemaError: The document is missing or invalid.
        """
        if form_id in self._schemas:
            return self._schemas[form_id]

        document = self._read_document(form_id)
        if self.currency_bounds is not None:
            defaults = document.setdefault("defaults", {})
            defaults["currency"] = {**(defaults.get("currency") or {}), **self.currency_bounds}

        schema = schema_from_document(document)
        if schema.form_id != form_id:
            raise SchemaError(
                f"Schema file for '{form_id}' declares form_id '{schema.form_id}'"
            )

        self._schemas[form_id] = schema
        logger.info(f"Loaded form schema '{form_id}' (version {schema.version})")
        return schema

    def _read_document(self, form_id: str) -> Dict[str, Any]:
        for suffix in SCHEMA_SUFFIXES:
            path = self.schema_dir / f"{form_id}{suffix}"
            if path.exists():
                break
        else:
            raise SchemaError(f"No schema document for form '{form_id}' in {self.schema_dir}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SchemaError(f"Could not parse {path}: {e}") from e

        if not isinstance(document, dict):
            raise SchemaError(f"Schema document {path} must be a mapping")
        return document


@lru_cache(maxsize=1)
def get_schema_loader() -> FormSchemaLoader:
    """Get the process-wide loader configured from engine settings."""
    from config.settings import get_settings

    settings = get_settings()
    return FormSchemaLoader(
        schema_dir=settings.schema_dir,
        currency_bounds={"min": settings.currency_min, "max": settings.currency_max},
    )


def get_schema(form_id: str) -> FormSchema:
    """
    Convenience function to get a loaded form schema.

    Example:
        >>> schema = get_schema("statement_of_financial_condition")
        >>> [step.number for step in schema.steps]
        [1, 2]
    """
    return get_schema_loader().load(form_id)


def clear_schema_cache() -> None:
    """Clear the loader cache (useful for testing)."""
    get_schema_loader.cache_clear()
