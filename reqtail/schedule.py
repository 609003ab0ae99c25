"""Daily summary scheduling: run time parsing, due check, window selection."""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from .logging_config import get_logger

logger = get_logger("schedule")

DEFAULT_RUN_TIME = (23, 45)
ONE_DAY = timedelta(days=1)
# A window shorter than this is widened to a full day.
MIN_WINDOW = timedelta(hours=22)

RUN_TIME_PATTERN = re.compile(r"\A\s*(0?\d|1\d|2[0-3]):(0?\d|[1-4]\d|5[0-9])\s*\Z")


def parse_run_time(value: str | None) -> tuple[int, int]:
    """(hour, minute) from "HH:MM"; malformed or missing values fall back to 23:45."""
    m = RUN_TIME_PATTERN.match(value or "")
    if not m:
        if value:
            logger.debug("Malformed summary run time %r, using %02d:%02d", value, *DEFAULT_RUN_TIME)
        return DEFAULT_RUN_TIME
    return int(m.group(1)), int(m.group(2))


def summary_due(now: datetime, last_summary: datetime, run_time: tuple[int, int]) -> bool:
    """True once now has passed today's run time and the last summary was on another day."""
    hour, minute = run_time
    past_run_time = (now.hour, now.minute) >= (hour, minute)
    return past_run_time and last_summary.date() != now.date()


def summary_window(now: datetime, last_summary: datetime) -> tuple[datetime, datetime]:
    """(after, before) for the summary; always covers at least a full day."""
    after = last_summary
    if now - last_summary < MIN_WINDOW:
        after = now - ONE_DAY
    return after, now
