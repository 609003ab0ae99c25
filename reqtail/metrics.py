"""Rate and latency statistics for one invocation.

Rates are measured against wall-clock time since the previous invocation,
not the span of log timestamps: a monitor that was down for a while reports
a lower rate for the catch-up run rather than an inflated one.
"""

from __future__ import annotations

from .logging_config import get_logger
from .models import Alert, RunReport, ScanResult

logger = get_logger("metrics")

# Intervals shorter than this (first run, clock skew) are clamped.
MIN_INTERVAL_SECONDS = 1.0
RATE_DECIMALS = 2


def compute_run_report(scan: ScanResult, elapsed_seconds: float) -> RunReport:
    """Turn scan counters and the elapsed wall-clock interval into a RunReport.

    average_duration_seconds stays None when no request was seen; zero would
    claim every request was instantaneous.
    """
    interval_seconds = max(elapsed_seconds, MIN_INTERVAL_SECONDS)
    if elapsed_seconds < MIN_INTERVAL_SECONDS:
        logger.debug("Elapsed interval %.3fs clamped to %.0fs", elapsed_seconds, MIN_INTERVAL_SECONDS)
    interval_minutes = interval_seconds / 60.0
    count = scan.request_count
    slow = scan.slow_request_count
    return RunReport(
        request_count=count,
        slow_request_count=slow,
        average_duration_seconds=scan.average_duration,
        request_rate_per_minute=round(count / interval_minutes, RATE_DECIMALS),
        slow_request_rate_per_minute=round(slow / interval_minutes, RATE_DECIMALS),
        slow_request_percentage=(100.0 * slow / count) if count else 0.0,
        slow_requests=list(scan.slow_requests),
        interval_seconds=interval_seconds,
    )


def build_slow_request_alert(report: RunReport, max_request_length: float) -> Alert | None:
    """Single alert listing every slow request, or None when there were none."""
    count = report.slow_request_count
    if count <= 0:
        return None
    title = (
        f"Maximum Time({max_request_length:g} sec) exceeded on "
        f"{count} request{'s' if count != 1 else ''}"
    )
    body = "".join(f"{s.label}\n{s.detail_line}\n\n" for s in report.slow_requests)
    return Alert(title=title, body=body)
