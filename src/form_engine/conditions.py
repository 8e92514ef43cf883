"""Conditional predicates.

Predicates decide visibility ("show_if") and conditional required-ness
("required_if"). They are written declaratively in the schema document:

    {"field": "has_joint_owner", "equals": true}
    {"field": "account_type", "in": ["Joint", "Trust"]}
    {"field": "notes", "answered": true}
    {"or": [{...}, {...}]}, {"and": [...]}, {"not": {...}}

and compiled once into a ``Predicate`` that knows which fields it reads, so
the visibility resolver can invalidate only what a mutation touches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Union

from .errors import SchemaError
from .normalization import is_blank, parse_boolean, parse_currency, round_cents

ValueLookup = Mapping[str, Any]
PredicateFn = Callable[[ValueLookup], bool]

_COMPARATORS = ("equals", "not_equals", "in", "answered")


@dataclass(frozen=True)
class Predicate:
    """A pure boolean function of field values plus the fields it reads."""
    fn: PredicateFn
    reads: FrozenSet[str]
    source: Optional[Dict[str, Any]] = None

    def __call__(self, values: ValueLookup) -> bool:
        return bool(self.fn(values))

    @classmethod
    def from_callable(cls, fn: PredicateFn, reads: Iterable[str]) -> "Predicate":
        """Wrap a hand-written predicate; ``reads`` must list every field it looks at."""
        return cls(fn=fn, reads=frozenset(reads))


def compile_condition(condition: Union[Dict[str, Any], Predicate, None]) -> Optional[Predicate]:
    """Compile a declarative condition into a Predicate.

    Raises:
        SchemaError: The condition is malformed.
    """
    if condition is None or isinstance(condition, Predicate):
        return condition
    if not isinstance(condition, dict):
        raise SchemaError(f"Condition must be a mapping, got {type(condition).__name__}")

    fn, reads = _compile(condition)
    return Predicate(fn=fn, reads=frozenset(reads), source=condition)


def _compile(condition: Dict[str, Any]):
    if "and" in condition or "or" in condition:
        key = "and" if "and" in condition else "or"
        parts = condition[key]
        if not isinstance(parts, list) or not parts:
            raise SchemaError(f"'{key}' condition needs a non-empty list")
        compiled = [_compile(part) for part in parts]
        fns = [fn for fn, _ in compiled]
        reads = set().union(*(r for _, r in compiled))
        if key == "and":
            return (lambda values: all(f(values) for f in fns)), reads
        return (lambda values: any(f(values) for f in fns)), reads

    if "not" in condition:
        inner, reads = _compile(condition["not"])
        return (lambda values: not inner(values)), reads

    field_id = condition.get("field")
    if not field_id:
        raise SchemaError(f"Condition is missing 'field': {condition}")

    ops = [op for op in _COMPARATORS if op in condition]
    if len(ops) != 1:
        raise SchemaError(
            f"Condition on '{field_id}' needs exactly one of {', '.join(_COMPARATORS)}"
        )
    op = ops[0]
    expected = condition[op]

    if op == "equals":
        fn = lambda values: _matches(values.get(field_id), expected)
    elif op == "not_equals":
        fn = lambda values: not _matches(values.get(field_id), expected)
    elif op == "in":
        if not isinstance(expected, list):
            raise SchemaError(f"'in' condition on '{field_id}' needs a list")
        fn = lambda values: any(_matches(values.get(field_id), option) for option in expected)
    else:
        want = bool(expected)
        fn = lambda values: (not is_blank(values.get(field_id))) == want

    return fn, {field_id}


def _matches(value: Any, expected: Any) -> bool:
    """Compare a raw input with a schema literal, reading the input as the literal's type.

    Checkbox inputs may arrive as "true"/"false" and amounts as "1,000".
    """
    if isinstance(expected, bool):
        flag = parse_boolean(value)
        return flag is not None and flag == expected
    if isinstance(expected, (int, float)):
        number = parse_currency(value)
        return number is not None and number == round_cents(expected)
    return value == expected
