"""Request correlation: pair "Completed" lines with their "Processing" lines.

A Rails request logs "Processing ... at <time>)" when it starts and
"Completed in ..." when it finishes. Read backwards, the completion always
comes first, so one pending slot is enough to join the two.
"""

from __future__ import annotations

import re
from typing import Iterable, Iterator

from .models import CompletionRecord, RequestEvent
from .timestamps import to_key

# Standard Rails logger and syslogger shapes.
RAILS_22_COMPLETED = re.compile(r"(Completed in (\d+)ms .+) \[(\S+)\]\Z")
RAILS_21_COMPLETED = re.compile(r"(Completed in (\d+\.\d+) .+) \[(\S+)\]\Z")
PROCESSING = re.compile(r"Processing .+ at (\d+-\d+-\d+ \d+:\d+:\d+)\)")


def parse_completion(line: str) -> CompletionRecord | None:
    """CompletionRecord for a "Completed in" line (ms or fractional seconds), else None."""
    m = RAILS_22_COMPLETED.search(line)
    if m:
        return CompletionRecord(int(m.group(2)) / 1000.0, m.group(1), m.group(3))
    m = RAILS_21_COMPLETED.search(line)
    if m:
        return CompletionRecord(float(m.group(2)), m.group(1), m.group(3))
    return None


def parse_processing(line: str) -> str | None:
    """Raw start timestamp of a "Processing" line, else None."""
    m = PROCESSING.search(line)
    return m.group(1) if m else None


class RequestCorrelator:
    """One-slot state machine consuming lines in reverse chronological order.

    A completion with no earlier "Processing" line before the start of the
    file is dropped.
    """

    __slots__ = ("pending",)

    def __init__(self) -> None:
        self.pending: CompletionRecord | None = None

    def feed(self, line: str) -> RequestEvent | None:
        completion = parse_completion(line)
        if completion is not None:
            self.pending = completion
            return None
        if self.pending is None:
            return None
        raw_ts = parse_processing(line)
        if raw_ts is None:
            return None
        pending = self.pending
        self.pending = None
        return RequestEvent(
            key=to_key(raw_ts),
            timestamp=raw_ts,
            duration=pending.duration_seconds,
            label=pending.label,
            detail_line=pending.detail_line,
        )

    def correlate(self, lines: Iterable[str]) -> Iterator[RequestEvent]:
        """Events for lines given newest first. Stops pulling lines when the caller stops."""
        for line in lines:
            event = self.feed(line)
            if event is not None:
                yield event
