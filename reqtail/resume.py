"""Resume locator: find where a historical time window starts in the log.

Used once a day to hand the summary analyzer a file handle already
positioned near the start of its window. Unlike the dedup scan it may walk
a whole day of log, so it runs under a byte and time budget.
"""

from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from .correlator import PROCESSING
from .logging_config import get_logger
from .models import DEFAULT_MAX_SCAN_BYTES, DEFAULT_MAX_SCAN_SECONDS
from .reverse_reader import DEFAULT_CHUNK_SIZE, ReverseLineReader
from .timestamps import key_from_datetime, to_key

logger = get_logger("resume")

# Budget checks are skipped for most lines.
BUDGET_CHECK_EVERY = 1024


def locate_resume_offset(
    log_path: str | Path,
    target: datetime,
    max_scan_bytes: int = DEFAULT_MAX_SCAN_BYTES,
    max_scan_seconds: float = DEFAULT_MAX_SCAN_SECONDS,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int | None:
    """Byte offset of the earliest "Processing" line started at or after target.

    That offset is the point just after the newest line older than the
    window. Returns None when no "Processing" line is in the window. When
    the budget runs out the best offset found so far is returned.

    Raises:
        LogNotFoundError: If log_path does not exist
    """
    target_key = key_from_datetime(target)
    start: int | None = None
    deadline = time.monotonic() + max_scan_seconds
    with ReverseLineReader(log_path, chunk_size=chunk_size) as reader:
        end = reader.position
        for n, (line, offset) in enumerate(reader, 1):
            m = PROCESSING.search(line)
            if m:
                if to_key(m.group(1)) < target_key:
                    break
                start = offset
            if n % BUDGET_CHECK_EVERY == 0 and (
                end - offset > max_scan_bytes or time.monotonic() > deadline
            ):
                logger.warning(
                    "Resume scan of %s stopped by budget after %d bytes; summary window may be truncated",
                    log_path, end - offset,
                )
                break
    logger.debug("Resume offset for %s at %s: %s", log_path, target, start)
    return start


def open_at_timestamp(
    log_path: str | Path,
    target: datetime,
    max_scan_bytes: int = DEFAULT_MAX_SCAN_BYTES,
    max_scan_seconds: float = DEFAULT_MAX_SCAN_SECONDS,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> BinaryIO:
    """Open log_path for binary reading, seeked to the window start (or file start). Caller closes it."""
    start = locate_resume_offset(
        log_path, target,
        max_scan_bytes=max_scan_bytes,
        max_scan_seconds=max_scan_seconds,
        chunk_size=chunk_size,
    )
    fh = open(log_path, "rb")
    if start:
        fh.seek(start)
    return fh
