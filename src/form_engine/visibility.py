"""
Visibility Resolver.

Decides which fields are active. Hidden fields are skipped by required
checks and contribute 0 to derived totals.

Results are cached per field. Every predicate declares the fields it reads,
so a write to field X only drops the cached answers of predicates that read
X; everything else is served from the cache.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .field_schema import FormSchema
from .value_store import MutationListener, ValueStore

logger = logging.getLogger(__name__)


class VisibilityResolver:
    """Active/hidden decisions for the fields of one schema."""

    def __init__(self, schema: FormSchema):
        self._schema = schema
        self._store: Optional[ValueStore] = None
        self._listener: Optional[MutationListener] = None
        self._cache: Dict[str, bool] = {}

    def is_active(self, field_id: str, store: ValueStore) -> bool:
        """Return True when the field is visible.

        Never raises: unknown fields and fields without a predicate are
        active, and a predicate that fails is logged and treated as active.
        """
        self._bind(store)

        cached = self._cache.get(field_id)
        if cached is not None:
            return cached

        active = self._evaluate(field_id, store)
        self._cache[field_id] = active
        return active

    def active_fields(self, store: ValueStore, field_ids: Optional[Iterable[str]] = None) -> List[str]:
        ids = field_ids if field_ids is not None else (f.id for f in self._schema.fields)
        return [fid for fid in ids if self.is_active(fid, store)]

    def invalidate(self, field_id: str) -> None:
        """Drop cached answers of predicates that read ``field_id``."""
        for dependent in self._schema.visibility_dependents(field_id):
            self._cache.pop(dependent, None)

    def reset(self) -> None:
        self._cache.clear()

    def release(self) -> None:
        """Stop listening to the bound store and forget every cached answer."""
        if self._store is not None and self._listener is not None:
            self._store.unsubscribe(self._listener)
        self._store = None
        self._listener = None
        self._cache.clear()

    def _bind(self, store: ValueStore) -> None:
        if store is self._store:
            return
        self.release()
        self._store = store
        self._listener = self.invalidate
        store.subscribe(self._listener)

    def _evaluate(self, field_id: str, store: ValueStore) -> bool:
        if not self._schema.has_field(field_id):
            return True
        predicate = self._schema.field(field_id).visibility
        if predicate is None:
            return True
        try:
            return predicate(store)
        except Exception as e:
            logger.warning(
                f"Visibility predicate for '{field_id}' failed, treating as visible: {e}",
                extra={"field_id": field_id},
            )
            return True
