"""Data models for reqtail.

Hot-path objects (one per matched log line) use __slots__; the per-invocation
values (checkpoint, report, config) are slotted dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum

from .reverse_reader import DEFAULT_CHUNK_SIZE

# First-ever invocation looks back this far for requests.
BOOTSTRAP_WINDOW = timedelta(seconds=60)
# Limits on how far back the summary looks for its window start.
DEFAULT_MAX_SCAN_BYTES = 4 * 1024 ** 3
DEFAULT_MAX_SCAN_SECONDS = 300.0


class SummaryFormat(str, Enum):
    """Rendering of the daily summary."""

    HTML = "html"
    TEXT = "text"


class MessageLevel(str, Enum):
    """Severity of a message surfaced to the host after an invocation."""

    WARNING = "warning"
    ERROR = "error"


class CompletionRecord:
    """A matched "Completed in ..." line, held until its "Processing" line is seen."""

    __slots__ = ("duration_seconds", "detail_line", "label")

    def __init__(self, duration_seconds: float, detail_line: str, label: str) -> None:
        self.duration_seconds = duration_seconds
        self.detail_line = detail_line
        self.label = label

    def __repr__(self) -> str:
        return f"CompletionRecord(duration={self.duration_seconds:.3f}, label={self.label!r})"


class RequestEvent:
    """One completed request joined with its start time.

    key is the YYYYMMDDHHMMSS integer used for cutoff comparisons; timestamp
    keeps the raw text so the newest event can be parsed once for the checkpoint.
    """

    __slots__ = ("key", "timestamp", "duration", "label", "detail_line")

    def __init__(self, key: int, timestamp: str, duration: float, label: str, detail_line: str) -> None:
        self.key = key
        self.timestamp = timestamp
        self.duration = duration
        self.label = label
        self.detail_line = detail_line

    def __repr__(self) -> str:
        return (
            f"RequestEvent(timestamp={self.timestamp!r}, duration={self.duration:.3f}, "
            f"label={self.label!r})"
        )


@dataclass(slots=True, frozen=True)
class SlowRequest:
    label: str
    detail_line: str


@dataclass(slots=True, frozen=True)
class Checkpoint:
    """Values carried from one invocation to the next.

    A request started at or before last_request_time has already been counted.
    last_run_time is when the previous invocation finished its scan; rates are
    measured against it.
    """

    last_request_time: datetime | None = None
    last_summary_time: datetime | None = None
    last_run_time: datetime | None = None

    def resolve_request_time(self, now: datetime) -> datetime:
        if self.last_request_time is None:
            return now - BOOTSTRAP_WINDOW
        return self.last_request_time

    def interval_start(self, now: datetime) -> datetime:
        """Start of the wall-clock interval this invocation covers."""
        if self.last_run_time is not None:
            return self.last_run_time
        return self.resolve_request_time(now)

    def advance(self, **changes: datetime | None) -> "Checkpoint":
        return replace(self, **changes)


@dataclass(slots=True)
class ScanResult:
    """Counters accumulated by one dedup scan."""

    request_count: int = 0
    slow_request_count: int = 0
    total_duration: float = 0.0
    slow_requests: list[SlowRequest] = field(default_factory=list)
    newest_request_time: datetime | None = None
    lines_read: int = 0

    @property
    def average_duration(self) -> float | None:
        if self.request_count == 0:
            return None
        return self.total_duration / self.request_count


@dataclass(slots=True)
class RunReport:
    """Aggregated output of one invocation. Rates are per minute."""

    request_count: int
    slow_request_count: int
    average_duration_seconds: float | None
    request_rate_per_minute: float
    slow_request_rate_per_minute: float
    slow_request_percentage: float
    slow_requests: list[SlowRequest] = field(default_factory=list)
    interval_seconds: float = 0.0

    def metrics(self) -> dict[str, float | None]:
        """Structured metrics record handed to the host."""
        return {
            "request_rate_per_minute": self.request_rate_per_minute,
            "slow_request_rate_per_minute": self.slow_request_rate_per_minute,
            "average_duration_seconds": (
                round(self.average_duration_seconds, 2)
                if self.average_duration_seconds is not None
                else None
            ),
            "slow_request_percentage": self.slow_request_percentage,
        }


@dataclass(slots=True, frozen=True)
class Alert:
    title: str
    body: str


@dataclass(slots=True, frozen=True)
class MonitorMessage:
    level: MessageLevel
    title: str
    detail: str = ""


@dataclass(slots=True, frozen=True)
class Summary:
    command: str
    output: str
    window_start: datetime
    window_end: datetime


@dataclass(slots=True)
class MonitorConfig:
    """Runtime configuration from YAML and CLI flags."""

    log_path: str | None
    max_request_length: float = 3.0  # seconds; 0 disables slow-request alerting
    ignored_actions: str | None = None  # regex matched against the request label
    summary_run_time: str = "23:45"
    state_file: str = ".reqtail_state.json"
    summary_dir: str | None = None
    summary_format: SummaryFormat = SummaryFormat.HTML
    interval_seconds: float = 60.0
    summary_max_scan_bytes: int = DEFAULT_MAX_SCAN_BYTES
    summary_max_scan_seconds: float = DEFAULT_MAX_SCAN_SECONDS
    chunk_size: int = DEFAULT_CHUNK_SIZE


@dataclass(slots=True)
class InvocationResult:
    """Everything one invocation produced, including the checkpoint to persist."""

    checkpoint: Checkpoint
    report: RunReport | None = None
    alert: Alert | None = None
    summary: Summary | None = None
    messages: list[MonitorMessage] = field(default_factory=list)
    file_found: bool = True

    @property
    def ok(self) -> bool:
        return not any(m.level is MessageLevel.ERROR for m in self.messages)
