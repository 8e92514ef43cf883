"""
Value Store.

Holds the raw field values of one in-progress form session. Values are kept
exactly as entered (strings, numbers, booleans, row lists or None);
normalization happens in the derivation and validation passes.

Typing into a field that also has a formula marks it as a manual override.
Clearing that field drops the override and the computed value shows again.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from .field_schema import FormSchema
from .normalization import is_blank

logger = logging.getLogger(__name__)

MutationListener = Callable[[str], None]


@dataclass
class ValueEntry:
    """A single field value."""
    field_id: str
    raw_value: Any = None
    is_manual_override: bool = False


class ValueStore(Mapping[str, Any]):
    """
    Field id -> raw value for one form session.

    The store reads like a mapping of raw values, which is what visibility
    predicates and formulas consume. Writes go through ``set``/``update`` so
    override flags stay consistent and listeners hear about every change.
    """

    def __init__(self, schema: FormSchema, values: Optional[Mapping[str, Any]] = None):
        self._schema = schema
        self._entries: Dict[str, ValueEntry] = {}
        self._listeners: List[MutationListener] = []
        if values:
            self.update(values)

    @property
    def schema(self) -> FormSchema:
        return self._schema

    # Mapping protocol --------------------------------------------------

    def __getitem__(self, field_id: str) -> Any:
        return self._entries[field_id].raw_value

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # Entries -----------------------------------------------------------

    def entry(self, field_id: str) -> Optional[ValueEntry]:
        return self._entries.get(field_id)

    def is_manual_override(self, field_id: str) -> bool:
        entry = self._entries.get(field_id)
        return bool(entry and entry.is_manual_override)

    def overrides(self) -> Dict[str, Any]:
        """Raw values of every derived field the user has overridden."""
        return {
            fid: entry.raw_value
            for fid, entry in self._entries.items()
            if entry.is_manual_override
        }

    # Mutation ----------------------------------------------------------

    def subscribe(self, listener: MutationListener) -> None:
        """Register a callback invoked with the field id after every write."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: MutationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set(self, field_id: str, value: Any) -> None:
        """Write a value. Unknown field ids raise KeyError."""
        definition = self._schema.field(field_id)

        if is_blank(value):
            self._entries.pop(field_id, None)
        else:
            self._entries[field_id] = ValueEntry(
                field_id=field_id,
                raw_value=copy.deepcopy(value),
                is_manual_override=definition.is_derived,
            )

        for listener in self._listeners:
            listener(field_id)

    def update(self, values: Mapping[str, Any]) -> None:
        for field_id, value in values.items():
            self.set(field_id, value)

    def clear(self, field_id: str) -> None:
        self.set(field_id, None)

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the raw values, suitable for persistence."""
        return {fid: copy.deepcopy(entry.raw_value) for fid, entry in self._entries.items()}
