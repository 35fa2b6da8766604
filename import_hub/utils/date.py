"""
Date parsing utilities used by the validation engine's date check.
"""

import logging
import re
import warnings
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

from import_hub.core.config import settings

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_failure_stats: dict = {}


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled debug lines + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.debug("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse messages after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def _to_timestamp(value: Any, dayfirst: bool) -> pd.Timestamp:
    with warnings.catch_warnings():
        # pandas warns when it falls back to dateutil for a single value
        warnings.simplefilter("ignore", UserWarning)
        result = pd.to_datetime(value, dayfirst=dayfirst, errors="raise")
    if result is pd.NaT:
        raise ValueError("Value parsed to NaT")
    return result


def parse_flexible_date(value: Any, *, log_context: Optional[str] = None, log_failures: bool = True) -> Optional[pd.Timestamp]:
    """
    Parse a date value from various formats.

    Supports ISO 8601, DD/MM/YYYY, MM/DD/YYYY and anything else pandas can
    infer. For ambiguous numeric dates the more plausible day/month order is
    tried first, then the alternate one.

    Returns:
        The parsed timestamp, or None if the value is empty or unparsable
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, (datetime, date)):
        return pd.Timestamp(value)

    text_value = str(value).strip()
    if text_value == "":
        return None

    dayfirst_order = [settings.date_default_dayfirst, not settings.date_default_dayfirst]
    numeric_match = re.match(r"^(\d{1,2})[/-](\d{1,2})[/-]\d{2,4}", text_value)
    if numeric_match:
        first, second = int(numeric_match.group(1)), int(numeric_match.group(2))
        if first > 12 and second <= 12:
            dayfirst_order = [True, False]
        elif second > 12 and first <= 12:
            dayfirst_order = [False, True]

    last_error: Optional[Exception] = None
    for dayfirst in dayfirst_order:
        try:
            return _to_timestamp(text_value, dayfirst)
        except (ValueError, OverflowError, TypeError) as exc:
            last_error = exc

    if log_failures:
        _record_parse_failure(value, log_context, last_error or ValueError("Unable to determine format"))
    return None


def is_parseable_date(value: Any, *, log_context: Optional[str] = None) -> bool:
    return parse_flexible_date(value, log_context=log_context) is not None
