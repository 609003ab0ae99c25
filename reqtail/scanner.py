"""Incremental dedup scan: count requests newer than the last checkpoint.

Reads the log backwards and stops at the first request that starts at or
before the previous checkpoint, so each invocation only touches the lines
appended since the last one.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

from .correlator import RequestCorrelator
from .logging_config import get_logger
from .models import ScanResult, SlowRequest
from .reverse_reader import DEFAULT_CHUNK_SIZE, ReverseLineReader
from .timestamps import key_from_datetime, parse_timestamp

logger = get_logger("scanner")


def is_slow(
    duration: float,
    label: str,
    max_request_length: float,
    ignored_actions: re.Pattern[str] | None = None,
) -> bool:
    """True if duration exceeds a non-zero threshold and label is not excluded."""
    if max_request_length <= 0 or duration <= max_request_length:
        return False
    return ignored_actions is None or ignored_actions.search(label) is None


def scan_log(
    log_path: str | Path,
    last_request_time: datetime,
    max_request_length: float,
    ignored_actions: re.Pattern[str] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ScanResult:
    """Count requests started after last_request_time.

    Args:
        log_path: Request log to scan
        last_request_time: Start time of the newest request already counted
        max_request_length: Slow-request threshold in seconds (0 disables)
        ignored_actions: Labels matching this pattern never count as slow
        chunk_size: Bytes read per backward step

    Returns:
        ScanResult; newest_request_time is the start of the most recent request
        in the file (None when the file holds no complete request)

    Raises:
        LogNotFoundError: If log_path does not exist
        TimestampError: If the newest request's timestamp is not a valid time
    """
    cutoff = key_from_datetime(last_request_time)
    result = ScanResult()
    correlator = RequestCorrelator()
    newest_raw: str | None = None
    stopped_at_cutoff = False

    with ReverseLineReader(log_path, chunk_size=chunk_size) as reader:
        for line, _offset in reader:
            result.lines_read += 1
            event = correlator.feed(line)
            if event is None:
                continue
            if newest_raw is None:
                newest_raw = event.timestamp
            if event.key <= cutoff:
                stopped_at_cutoff = True
                break
            result.request_count += 1
            result.total_duration += event.duration
            if is_slow(event.duration, event.label, max_request_length, ignored_actions):
                result.slow_request_count += 1
                result.slow_requests.append(SlowRequest(event.label, event.detail_line))

    if newest_raw is not None:
        result.newest_request_time = parse_timestamp(newest_raw)
    logger.debug(
        "Scanned %s: lines=%d requests=%d slow=%d cutoff=%d reached_cutoff=%s",
        log_path, result.lines_read, result.request_count, result.slow_request_count,
        cutoff, stopped_at_cutoff,
    )
    return result
