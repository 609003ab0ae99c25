"""Daily request summary: per-action latency statistics over a time window.

The analyzer contract is analyze(after, before, source) -> report text, where
source is a binary handle already positioned near the window start by the
resume locator. Requests are correlated forward here ("Processing" then
"Completed"), percentiles come from a streaming T-Digest and the text is
rendered from package templates.
"""

from __future__ import annotations

import heapq
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Iterator

from jinja2 import Environment, PackageLoader, select_autoescape
from tdigest import TDigest

from . import __version__ as reqtail_version
from .correlator import parse_completion, parse_processing
from .exceptions import ReqtailSummaryError
from .logging_config import get_logger
from .models import SummaryFormat
from .timestamps import format_timestamp, key_from_datetime, to_key

logger = get_logger("summary")

Analyzer = Callable[[datetime, datetime, BinaryIO], str]

ACTION_PATTERN = re.compile(r"Processing (\S+)")
STATUS_PATTERN = re.compile(r"\| (\d{3})\b")
UNKNOWN_ACTION = "unknown"
UNKNOWN_STATUS = "-"
TOP_SLOWEST = 10

_TEMPLATES = {
    SummaryFormat.HTML: "summary.html",
    SummaryFormat.TEXT: "summary.txt",
}


def _percentile_from_digest(digest: TDigest, p: float) -> float:
    """Get percentile from T-Digest. Returns 0.0 if empty."""
    try:
        return digest.percentile(p) or 0.0
    except (ValueError, IndexError):
        return 0.0


@dataclass(slots=True)
class ActionStats:
    """Running statistics for one controller action."""

    action: str
    count: int = 0
    total_seconds: float = 0.0
    max_seconds: float = 0.0
    digest: TDigest = field(default_factory=TDigest)

    def add(self, duration: float) -> None:
        self.count += 1
        self.total_seconds += duration
        if duration > self.max_seconds:
            self.max_seconds = duration
        self.digest.update(duration)

    @property
    def mean_seconds(self) -> float:
        return self.total_seconds / self.count if self.count else 0.0


@dataclass(slots=True)
class WindowRequest:
    started_at: str
    action: str
    label: str
    status: str
    duration: float


def iter_window_requests(source: BinaryIO, after: datetime, before: datetime) -> Iterator[WindowRequest]:
    """Requests started within [after, before], read forward from source's current position."""
    after_key = key_from_datetime(after)
    before_key = key_from_datetime(before)
    pending: tuple[str, str] | None = None
    for raw in source:
        line = raw.rstrip(b"\r\n").decode("utf-8", errors="replace")
        started = parse_processing(line)
        if started is not None:
            m = ACTION_PATTERN.search(line)
            pending = (started, m.group(1) if m else UNKNOWN_ACTION)
            continue
        if pending is None:
            continue
        completion = parse_completion(line)
        if completion is None:
            continue
        started, action = pending
        pending = None
        key = to_key(started)
        if key < after_key:
            continue
        if key > before_key:
            break
        m = STATUS_PATTERN.search(completion.detail_line)
        yield WindowRequest(
            started_at=started,
            action=action,
            label=completion.label,
            status=m.group(1) if m else UNKNOWN_STATUS,
            duration=completion.duration_seconds,
        )


def build_summary_context(source: BinaryIO, after: datetime, before: datetime) -> dict[str, object]:
    """Aggregate the window into the template context."""
    by_action: dict[str, ActionStats] = {}
    status_counts: dict[str, int] = defaultdict(int)
    overall = ActionStats(action="all")
    slowest: list[tuple[float, int, WindowRequest]] = []

    for n, req in enumerate(iter_window_requests(source, after, before)):
        stats = by_action.get(req.action)
        if stats is None:
            stats = by_action[req.action] = ActionStats(action=req.action)
        stats.add(req.duration)
        overall.add(req.duration)
        status_counts[req.status] += 1
        # n breaks ties so WindowRequest is never compared
        item = (req.duration, -n, req)
        if len(slowest) < TOP_SLOWEST:
            heapq.heappush(slowest, item)
        elif item > slowest[0]:
            heapq.heapreplace(slowest, item)

    total = overall.count
    action_rows = []
    for stats in sorted(by_action.values(), key=lambda s: -s.total_seconds):
        action_rows.append({
            "action": stats.action,
            "count": stats.count,
            "mean": round(stats.mean_seconds, 3),
            "p50": round(_percentile_from_digest(stats.digest, 50), 3),
            "p95": round(_percentile_from_digest(stats.digest, 95), 3),
            "max": round(stats.max_seconds, 3),
            "total": round(stats.total_seconds, 2),
            "share": (stats.total_seconds / overall.total_seconds) if overall.total_seconds else 0.0,
        })
    status_rows = [
        {"status": status, "count": count, "share": count / total}
        for status, count in sorted(status_counts.items(), key=lambda x: -x[1])
    ]
    slowest_rows = [
        {
            "started_at": req.started_at,
            "action": req.action,
            "label": req.label,
            "duration": round(req.duration, 3),
        }
        for _, _, req in sorted(slowest, reverse=True)
    ]
    return {
        "after": format_timestamp(after),
        "before": format_timestamp(before),
        "total_requests": total,
        "total_seconds": round(overall.total_seconds, 2),
        "mean_seconds": round(overall.mean_seconds, 3) if total else None,
        "p95_seconds": round(_percentile_from_digest(overall.digest, 95), 3) if total else None,
        "action_rows": action_rows,
        "status_rows": status_rows,
        "slowest_rows": slowest_rows,
        "reqtail_version": reqtail_version,
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
    }


def _environment() -> Environment:
    return Environment(
        loader=PackageLoader("reqtail", "templates"),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_summary(context: dict[str, object], fmt: SummaryFormat = SummaryFormat.HTML) -> str:
    template = _environment().get_template(_TEMPLATES[fmt])
    return template.render(**context).strip()


def make_analyzer(fmt: SummaryFormat = SummaryFormat.HTML) -> Analyzer:
    """Analyzer rendering the summary in the given format."""

    def analyze_window(after: datetime, before: datetime, source: BinaryIO) -> str:
        try:
            context = build_summary_context(source, after, before)
        except OSError as e:
            raise ReqtailSummaryError(f"Cannot read log for summary: {e}", original_error=e) from e
        logger.info(
            "Summary window %s .. %s: %s requests",
            context["after"], context["before"], context["total_requests"],
            extra={"window": f"{context['after']}..{context['before']}"},
        )
        return render_summary(context, fmt)

    return analyze_window


analyze: Analyzer = make_analyzer(SummaryFormat.HTML)
