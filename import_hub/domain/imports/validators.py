"""
Value-level checks used by the validation engine.

Patterns are kept deliberately loose: they flag values that are clearly not
an email or phone number rather than enforcing a single canonical format.
"""

import math
import re
from typing import Any, Optional, Pattern, Union

from import_hub.utils.date import is_parseable_date


PRESET_PATTERNS = {
    "email": r"^[^\s@]+@[^\s@]+\.[^\s@]+$",
    "phone": r"^[\d\s\-+()]+$",
}

PHONE_MIN_LENGTH = 7

_EMAIL_RE = re.compile(PRESET_PATTERNS["email"])
_PHONE_RE = re.compile(PRESET_PATTERNS["phone"])


def is_valid_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return False
    return math.isfinite(parsed)


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def is_valid_phone(value: str) -> bool:
    return bool(_PHONE_RE.match(value)) and len(value) >= PHONE_MIN_LENGTH


def is_valid_date(value: Any, *, field_name: Optional[str] = None) -> bool:
    return is_parseable_date(value, log_context=field_name)


def compile_pattern(pattern: Union[str, Pattern[str]]) -> Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern)
    return pattern
