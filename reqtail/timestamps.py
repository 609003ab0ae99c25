"""Timestamp codec: log timestamp text to a comparable integer key and back to calendar time.

datetime parsing is slow relative to the per-line scan, so the scan compares
YYYYMMDDHHMMSS integers instead. Strict parsing is reserved for the one value
per invocation that becomes the checkpoint.
"""

from __future__ import annotations

import re
from datetime import datetime

from .exceptions import TimestampError

KEY_DIGITS = 14
TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S"

_NON_DIGIT = re.compile(r"[^0-9]")


def to_key(raw: str) -> int:
    """Digits of raw, truncated to 14, as an int. Never raises; no digits gives 0."""
    digits = _NON_DIGIT.sub("", raw)[:KEY_DIGITS]
    return int(digits) if digits else 0


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FMT)


def key_from_datetime(value: datetime) -> int:
    return to_key(format_timestamp(value))


def parse_timestamp(raw: str) -> datetime:
    """Parse a log timestamp (YYYY-MM-DD HH:MM:SS, ISO-8601 also accepted).

    Raises:
        TimestampError: If raw is not a valid calendar time
    """
    text = raw.strip()
    try:
        return datetime.strptime(text, TIMESTAMP_FMT)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise TimestampError(
            f"Invalid log timestamp: {raw!r}",
            context={"raw": raw},
            original_error=e,
        ) from e
    # Checkpoints are naive local time, like the log itself.
    return parsed.replace(tzinfo=None)
