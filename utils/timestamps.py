"""
Timestamp normalization to epoch milliseconds.

Feed events carry timestamps as numbers, digit strings (epoch ms) or
date/time strings. ISO-8601 and RFC 2822 are tried first; anything else
goes through dateutil's general parser.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from dateutil import parser as date_parser

from utils.errors import UnparseableTimestamp

_DIGITS = re.compile(r"[0-9]+")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_known_formats(text: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        pass
    try:
        return date_parser.parse(text)
    except (ValueError, OverflowError):
        return None


def parse_datetime(value: str) -> Optional[datetime]:
    """
    Parse a date/time string into an aware datetime.

    Naive values are taken as UTC. Returns None if no parser accepts the
    string.
    """
    text = value.strip()
    if not text:
        return None

    parsed = _parse_known_formats(text)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_ms(dt: datetime) -> int:
    return (dt - _EPOCH) // timedelta(milliseconds=1)


MIN_TIMESTAMP_MS = to_epoch_ms(datetime.min.replace(tzinfo=timezone.utc))
MAX_TIMESTAMP_MS = to_epoch_ms(datetime.max.replace(tzinfo=timezone.utc))


def _in_range(value: Any, timestamp_ms: int) -> int:
    if not MIN_TIMESTAMP_MS <= timestamp_ms <= MAX_TIMESTAMP_MS:
        raise UnparseableTimestamp(value)
    return timestamp_ms


def parse_timestamp_ms(value: Any) -> int:
    """
    Normalize an event timestamp to epoch milliseconds.

    Args:
        value: Finite number, digit-only string (epoch ms), or date/time string

    Returns:
        Epoch milliseconds between years 1 and 9999

    Raises:
        UnparseableTimestamp: For any other shape or an out-of-range value
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isfinite(value):
            return _in_range(value, int(value))
        raise UnparseableTimestamp(value)

    if isinstance(value, str):
        if _DIGITS.fullmatch(value):
            return _in_range(value, int(value))
        parsed = parse_datetime(value)
        if parsed is not None:
            return _in_range(value, to_epoch_ms(parsed))

    raise UnparseableTimestamp(value)
