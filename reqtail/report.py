"""File outputs: machine-readable invocation report and daily summary files."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson

from .exceptions import ReqtailSummaryError
from .logging_config import get_logger
from .models import InvocationResult, Summary, SummaryFormat
from .timestamps import format_timestamp

logger = get_logger("report")

REPORT_TIMESTAMP_FMT = "%Y%m%d_%H%M%S"
SUMMARY_SUFFIXES = {SummaryFormat.HTML: ".html", SummaryFormat.TEXT: ".txt"}


def _ts(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


def invocation_payload(result: InvocationResult) -> dict[str, Any]:
    """JSON-ready dict for one invocation (metrics, alert, messages, checkpoint)."""
    report = result.report
    payload: dict[str, Any] = {
        "ok": result.ok,
        "file_found": result.file_found,
        "metrics": report.metrics() if report is not None else None,
        "request_count": report.request_count if report is not None else 0,
        "slow_request_count": report.slow_request_count if report is not None else 0,
        "interval_seconds": round(report.interval_seconds, 3) if report is not None else None,
        "slow_requests": (
            [{"label": s.label, "detail": s.detail_line} for s in report.slow_requests]
            if report is not None
            else []
        ),
        "alert": (
            {"title": result.alert.title, "body": result.alert.body}
            if result.alert is not None
            else None
        ),
        "summary": (
            {
                "command": result.summary.command,
                "window_start": _ts(result.summary.window_start),
                "window_end": _ts(result.summary.window_end),
            }
            if result.summary is not None
            else None
        ),
        "messages": [
            {"level": m.level.value, "title": m.title, "detail": m.detail}
            for m in result.messages
        ],
        "checkpoint": {
            "last_request_time": _ts(result.checkpoint.last_request_time),
            "last_summary_time": _ts(result.checkpoint.last_summary_time),
            "last_run_time": _ts(result.checkpoint.last_run_time),
        },
    }
    return payload


def generate_json_report(output_path: str | Path, result: InvocationResult) -> Path:
    """Write the invocation as indented JSON."""
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(invocation_payload(result), option=orjson.OPT_INDENT_2))
    logger.debug("Wrote JSON report to %s", out)
    return out


def _summary_path(directory: str | Path, summary: Summary, fmt: SummaryFormat) -> Path:
    # Timestamp so back-to-back summaries do not overwrite each other
    stem = "summary_" + summary.window_end.strftime(REPORT_TIMESTAMP_FMT)
    return Path(directory) / (stem + SUMMARY_SUFFIXES[fmt])


def write_summary(directory: str | Path, summary: Summary, fmt: SummaryFormat = SummaryFormat.HTML) -> Path:
    """Write summary output under directory. Raises ReqtailSummaryError on I/O failure."""
    path = _summary_path(directory, summary, fmt)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if fmt is SummaryFormat.HTML:
            body = (
                f"<!-- {summary.command} -->\n"
                f"<!-- written {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')} -->\n"
                f"{summary.output}\n"
            )
        else:
            body = f"# {summary.command}\n{summary.output}\n"
        path.write_text(body, encoding="utf-8")
    except OSError as e:
        raise ReqtailSummaryError(
            f"Cannot write summary: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    logger.debug(
        "Wrote summary to %s", path,
        extra={"window": f"{_ts(summary.window_start)}..{_ts(summary.window_end)}"},
    )
    return path
