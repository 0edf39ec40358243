"""Boundary validation shared by the API, the importer and manual submission."""
from __future__ import annotations

import math
import re

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_LEADING_NUMBER_RE = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)

MAX_IMPORT_BYTES = 10 * 1024 * 1024
MIN_YEAR, MAX_YEAR = 2000, 2100


class InvalidInput(ValueError):
    """User-facing validation error, raised before any mutation."""


def validate_uuid(value: object, field_name: str = "identifier") -> str:
    if not isinstance(value, str) or not _UUID_RE.match(value):
        raise InvalidInput(f"Invalid {field_name} format")
    return value


def validate_email(value: object) -> str:
    if not isinstance(value, str) or not _EMAIL_RE.match(value):
        raise InvalidInput("Invalid email format")
    return value


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def validate_year(year: object) -> int:
    y = _as_int(year)
    if y is None or not MIN_YEAR <= y <= MAX_YEAR:
        raise InvalidInput(f"Year must be between {MIN_YEAR} and {MAX_YEAR}.")
    return y


def validate_period(year: object, quarter: object) -> tuple[int, int]:
    """Return ``(year, quarter)`` as ints or raise :class:`InvalidInput`."""
    q = _as_int(quarter)
    if q is None or not 1 <= q <= 4:
        raise InvalidInput("Quarter must be between 1 and 4.")
    return validate_year(year), q


def validate_month(month: object) -> int:
    m = _as_int(month)
    if m is None or not 1 <= m <= 12:
        raise InvalidInput("Month must be between 1 and 12.")
    return m


def validate_manual_score(question_id: str, score: object) -> int:
    """Strict check for form submissions: an integer from 1 to 5."""
    s = _as_int(score)
    if s is None or not 1 <= s <= 5:
        raise InvalidInput(f"Invalid score for question {question_id}: must be an integer from 1 to 5")
    return s


def coerce_import_score(value: object) -> int:
    """Best-effort score for imported spreadsheet data.

    Numbers in [0, 5] round half-up to an int. Strings are read by their
    leading number, so ``"4/5"`` counts as 4. Anything else becomes 0.
    Never raises.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        if not 0 <= value <= 5:
            return 0
        num = float(value)
    elif isinstance(value, float):
        num = value
    elif isinstance(value, str):
        m = _LEADING_NUMBER_RE.match(value)
        if m is None:
            return 0
        num = float(m.group())
    else:
        return 0
    if math.isnan(num) or not 0 <= num <= 5:
        return 0
    return int(math.floor(num + 0.5))
