"""
Value normalization helpers.

Currency inputs arrive as free text ("$1,250.5", " 300 ", 42). They are
stripped of currency symbols, commas and whitespace and rounded to cents
with ROUND_HALF_UP before any arithmetic. Percentages drop a trailing "%".
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

Numeric = Union[int, float, str, Decimal]

MONEY_PLACES = Decimal("0.01")

_CURRENCY_NOISE = re.compile(r"[$,\s]")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_blank(value: Any) -> bool:
    """True for None, empty/whitespace strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def money(value: Numeric) -> Decimal:
    """Round value to cents using ROUND_HALF_UP."""
    if isinstance(value, float):
        value = Decimal(str(value))
    return Decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def round_cents(value: float) -> float:
    """Round a float to cents, returning a float."""
    return float(money(value))


def _to_number(value: Any, strip: re.Pattern) -> Optional[float]:
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = strip.sub("", value)
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_currency(value: Any) -> Optional[float]:
    """Parse a currency input to a float rounded to cents.

    Returns None when the value is blank or cannot be read as a number.
    """
    number = _to_number(value, _CURRENCY_NOISE)
    if number is None:
        return None
    try:
        return round_cents(number)
    except InvalidOperation:
        return None


_PERCENT_NOISE = re.compile(r"[%\s]")


def parse_percentage(value: Any) -> Optional[float]:
    """Parse a percentage input ("12.5%", 12.5) to a float."""
    return _to_number(value, _PERCENT_NOISE)


def normalize_currency(value: Any) -> str:
    """Canonical two-decimal string for a currency input, or "" if unreadable."""
    number = parse_currency(value)
    if number is None:
        return ""
    return f"{number:.2f}"


def format_currency(amount: float) -> str:
    """Format an amount for display: ``$1,234.56`` / ``-$1,234.56``."""
    rounded = round_cents(amount)
    sign = "-" if rounded < 0 else ""
    return f"{sign}${abs(rounded):,.2f}"


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse a YYYY-MM-DD string (or date/datetime) into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _ISO_DATE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def parse_boolean(value: Any) -> Optional[bool]:
    """Read a checkbox input: a bool, or the strings "true"/"false" in any case."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "false"):
            return text == "true"
    return None
