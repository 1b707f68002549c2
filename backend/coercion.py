"""
Loose-value coercion helpers shared by the detector and the normalizers.

Webhook payloads arrive with numbers as strings, floats, ints or missing
altogether. These helpers turn such values into numbers and timestamps
without ever raising: a value that cannot be read as a number becomes
NaN so that `validation` can reject it with a precise reason.
"""

import math
import secrets
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

Number = Union[int, float]


def is_present(value: Any) -> bool:
    """Loose truthiness: None, False, 0, NaN and "" are absent.

    Lists and mappings count as present even when empty.
    """

    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def dig(payload: Any, *path: str) -> Any:
    """Walk nested mappings, returning None as soon as a level is missing."""

    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def first_present(*values: Any) -> Any:
    for value in values:
        if is_present(value):
            return value
    return None


def to_number(value: Any, default: Number = 0) -> Number:
    """Read a loosely typed number.

    Absent values (see `is_present`) return `default`. Integral values come
    back as `int`, everything else numeric as `float`. Unreadable input
    (lists, mappings, junk strings, infinities) returns NaN.
    """

    if not is_present(value):
        return default
    if value is True:
        return 1
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return _narrow(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return _narrow(float(text))
        except ValueError:
            return math.nan
    return math.nan


def _narrow(value: float) -> Number:
    if math.isnan(value) or math.isinf(value):
        return math.nan
    if value.is_integer():
        return int(value)
    return value


def round_half_up(value: Number) -> Number:
    """Round to the nearest integer, halves toward +infinity. NaN stays NaN."""

    if isinstance(value, int):
        return value
    if math.isnan(value):
        return value
    return int(math.floor(value + 0.5))


def major_to_cents(value: Any) -> Number:
    """Convert a major-unit decimal such as "19.99" to cents (1999)."""

    return round_half_up(to_number(value) * 100)


def is_whole_cents(value: Any, cap: int) -> bool:
    """True when `value` is a real integer (not bool) with |value| <= cap."""

    return isinstance(value, int) and not isinstance(value, bool) and abs(value) <= cap


def to_currency(value: Any, default: str = "USD") -> str:
    if isinstance(value, str) and value.strip():
        return value.strip().upper()
    return default


def to_optional_str(value: Any) -> Optional[str]:
    if not is_present(value) or isinstance(value, (dict, list)):
        return None
    return str(value)


def from_epoch_seconds(value: Any, default: datetime) -> datetime:
    seconds = to_number(value, default=math.nan)
    if isinstance(seconds, float) and math.isnan(seconds):
        return default
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return default


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or epoch seconds) into an aware UTC datetime.

    Returns None when the value cannot be understood. Naive timestamps are
    taken to be UTC.
    """

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch_seconds(value, default=None)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    try:
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        return None


def random_event_id() -> str:
    """128 random bits as 32 lowercase hex characters."""

    return secrets.token_hex(16)
