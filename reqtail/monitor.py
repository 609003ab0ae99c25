"""Monitor invocations: dedup scan, rates, alert, checkpoint, daily summary.

run_invocation is one synchronous tick: it takes the previous Checkpoint and
returns the next one inside an InvocationResult, never touching storage.
Monitor wraps it for long-running use: scans on a timer, checkpoint access
under one lock, and the daily summary on a worker thread so a slow summary
never delays the next scan.
"""

from __future__ import annotations

import asyncio
import re
import signal
import traceback
from datetime import datetime
from typing import Callable, Protocol

from .exceptions import LogNotFoundError, ReqtailConfigError
from .logging_config import get_logger
from .metrics import build_slow_request_alert, compute_run_report
from .models import (
    Checkpoint,
    InvocationResult,
    MessageLevel,
    MonitorConfig,
    MonitorMessage,
    Summary,
)
from .report import write_summary
from .resume import open_at_timestamp
from .scanner import scan_log
from .schedule import parse_run_time, summary_due, summary_window
from .summary import Analyzer, make_analyzer
from .timestamps import format_timestamp

logger = get_logger("monitor")

MISSING_LOG_TITLE = "A path to the Rails log file wasn't provided."
MISSING_LOG_DETAIL = (
    "Please provide the full path to the Rails log file to analyze "
    "(ie - /var/www/apps/APP_NAME/log/production.log)"
)
LOG_NOT_FOUND_TITLE = "Unable to find the Rails log file"


class CheckpointStore(Protocol):
    def load(self) -> Checkpoint: ...

    def save(self, checkpoint: Checkpoint) -> None: ...


def _error(title: str, detail: str = "") -> MonitorMessage:
    return MonitorMessage(MessageLevel.ERROR, title, detail)


def _unexpected(e: BaseException) -> MonitorMessage:
    detail = "".join(traceback.format_exception(type(e), e, e.__traceback__))
    return _error(f"{type(e).__name__}:  {e}", detail)


def compile_ignored_actions(pattern: str | None) -> tuple[re.Pattern[str] | None, MonitorMessage | None]:
    """Compile the exclusion regex. A bad pattern yields a warning and no filter."""
    if pattern is None or not pattern.strip():
        return None, None
    try:
        return re.compile(pattern), None
    except re.error as e:
        logger.warning("Ignoring invalid ignored_actions pattern %r: %s", pattern, e)
        return None, MonitorMessage(
            MessageLevel.WARNING,
            "Invalid ignored_actions pattern",
            f"Could not understand the regular expression for excluding slow actions: {pattern}. {e}",
        )


def scan_step(config: MonitorConfig, checkpoint: Checkpoint, now: datetime) -> InvocationResult:
    """Dedup scan and rates. On any failure the request checkpoint is left as it was."""
    result = InvocationResult(checkpoint=checkpoint)
    if not config.log_path:
        result.file_found = False
        result.messages.append(_error(MISSING_LOG_TITLE, MISSING_LOG_DETAIL))
        return result

    ignored, warning = compile_ignored_actions(config.ignored_actions)
    if warning is not None:
        result.messages.append(warning)

    previous = checkpoint.resolve_request_time(now)
    try:
        scan = scan_log(
            config.log_path,
            previous,
            config.max_request_length,
            ignored,
            chunk_size=config.chunk_size,
        )
    except LogNotFoundError as e:
        logger.warning("Log file not found: %s", e.path, extra={"log_path": e.path})
        result.file_found = False
        result.messages.append(_error(
            LOG_NOT_FOUND_TITLE,
            f"Could not find a Rails log file at: {config.log_path}. Please ensure the path is correct.",
        ))
        return result
    except Exception as e:
        logger.exception("Scan of %s failed", config.log_path)
        result.messages.append(_unexpected(e))
        return result

    elapsed = (now - checkpoint.interval_start(now)).total_seconds()
    report = compute_run_report(scan, elapsed)
    result.report = report
    result.alert = build_slow_request_alert(report, config.max_request_length)
    result.checkpoint = checkpoint.advance(
        last_request_time=scan.newest_request_time or now,
        last_run_time=now,
    )
    logger.info(
        "Scan finished: requests=%d slow=%d rate=%.2f/min since %s",
        report.request_count, report.slow_request_count,
        report.request_rate_per_minute, format_timestamp(previous),
        extra={"log_path": config.log_path},
    )
    return result


def begin_summary(
    config: MonitorConfig,
    checkpoint: Checkpoint,
    now: datetime,
) -> tuple[Checkpoint, tuple[datetime, datetime] | None]:
    """Decide whether the daily summary runs now; returns (checkpoint, window or None).

    last_summary_time is advanced before the summary runs so a failing summary
    is not retried on every tick. The first tick only records the time.
    """
    last_summary = checkpoint.last_summary_time
    if last_summary is None:
        return checkpoint.advance(last_summary_time=now), None
    if not summary_due(now, last_summary, parse_run_time(config.summary_run_time)):
        return checkpoint, None
    return checkpoint.advance(last_summary_time=now), summary_window(now, last_summary)


def summary_command(log_path: str, after: datetime, before: datetime) -> str:
    """Command line that reproduces a summary for the same window."""
    return (
        f"reqtail --summary --after '{format_timestamp(after)}' "
        f"--before '{format_timestamp(before)}' --log '{log_path}'"
    )


def generate_summary(
    config: MonitorConfig,
    after: datetime,
    before: datetime,
    analyzer: Analyzer | None = None,
) -> Summary:
    """Position the log at the window start and run the analyzer over it.

    Raises:
        LogNotFoundError: If the log disappeared since the scan
        ReqtailSummaryError: If the analyzer fails to read the log
    """
    if analyzer is None:
        analyzer = make_analyzer(config.summary_format)
    if not config.log_path:
        raise ReqtailConfigError(MISSING_LOG_TITLE)
    with open_at_timestamp(
        config.log_path,
        after,
        max_scan_bytes=config.summary_max_scan_bytes,
        max_scan_seconds=config.summary_max_scan_seconds,
        chunk_size=config.chunk_size,
    ) as source:
        output = analyzer(after, before, source)
    return Summary(
        command=summary_command(config.log_path, after, before),
        output=output,
        window_start=after,
        window_end=before,
    )


def run_invocation(
    config: MonitorConfig,
    checkpoint: Checkpoint,
    now: datetime | None = None,
    analyzer: Analyzer | None = None,
) -> InvocationResult:
    """One complete tick: scan, report, and the daily summary when it is due.

    Never raises for log or summary problems; they are returned as messages.
    """
    now = now or datetime.now()
    result = scan_step(config, checkpoint, now)
    if not result.file_found:
        return result
    result.checkpoint, window = begin_summary(config, result.checkpoint, now)
    if window is not None:
        after, before = window
        try:
            result.summary = generate_summary(config, after, before, analyzer)
        except Exception as e:
            logger.exception("Daily summary failed")
            result.messages.append(_unexpected(e))
    return result


class Monitor:
    """Periodic monitor over one log and one checkpoint store.

    Only one Monitor may run against a given log/checkpoint pair.
    """

    def __init__(
        self,
        config: MonitorConfig,
        store: CheckpointStore,
        analyzer: Analyzer | None = None,
        on_result: Callable[[InvocationResult], None] | None = None,
        on_summary: Callable[[Summary], None] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.analyzer = analyzer or make_analyzer(config.summary_format)
        self.on_result = on_result
        self.on_summary = on_summary
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._summary_task: asyncio.Task[Summary | None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def summary_running(self) -> bool:
        return self._summary_task is not None and not self._summary_task.done()

    def stop(self) -> None:
        loop = self._loop
        if loop is not None and loop.is_running():
            # wakes the loop even when called from a signal handler
            loop.call_soon_threadsafe(self._stop.set)
        else:
            self._stop.set()

    def install_signal_handlers(self) -> None:
        """Stop after the current tick on SIGINT/SIGTERM."""

        def _signal_handler(signum: int, frame: object) -> None:
            logger.info("Shutdown signal received (signal %d), finishing current scan...", signum)
            self.stop()

        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, _signal_handler)
        signal.signal(signal.SIGINT, _signal_handler)

    async def tick(self, now: datetime | None = None) -> InvocationResult:
        """Run one scan; start the daily summary in the background when due."""
        now = now or datetime.now()
        window: tuple[datetime, datetime] | None = None
        async with self._lock:
            try:
                checkpoint = await asyncio.to_thread(self.store.load)
            except Exception as e:
                logger.exception("Cannot load checkpoint")
                return InvocationResult(checkpoint=Checkpoint(), messages=[_unexpected(e)], file_found=False)
            result = await asyncio.to_thread(scan_step, self.config, checkpoint, now)
            if result.file_found:
                if self.summary_running:
                    logger.info("Previous summary still running; next attempt on a later tick")
                else:
                    result.checkpoint, window = begin_summary(self.config, result.checkpoint, now)
            if result.checkpoint != checkpoint:
                try:
                    await asyncio.to_thread(self.store.save, result.checkpoint)
                except Exception as e:
                    logger.exception("Cannot save checkpoint")
                    result.messages.append(_unexpected(e))
                    window = None
        if window is not None:
            self._summary_task = asyncio.create_task(self._run_summary(*window))
        return result

    async def _run_summary(self, after: datetime, before: datetime) -> Summary | None:
        try:
            summary = await asyncio.to_thread(generate_summary, self.config, after, before, self.analyzer)
            if self.config.summary_dir:
                path = await asyncio.to_thread(write_summary, self.config.summary_dir, summary, self.config.summary_format)
                logger.info("Summary written to %s", path)
        except Exception:
            logger.exception("Daily summary failed")
            return None
        if self.on_summary is not None:
            self.on_summary(summary)
        return summary

    async def wait_for_summary(self) -> Summary | None:
        if self._summary_task is None:
            return None
        return await self._summary_task

    async def watch(self, iterations: int | None = None) -> int:
        """Tick every interval_seconds until stopped (or after iterations ticks). Returns ticks run."""
        self._loop = asyncio.get_running_loop()
        ticks = 0
        while not self._stop.is_set():
            try:
                result = await self.tick()
            except Exception:
                # keep the schedule alive; the next tick runs regardless
                logger.exception("Monitor tick failed")
            else:
                if self.on_result is not None:
                    self.on_result(result)
            ticks += 1
            if iterations is not None and ticks >= iterations:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.config.interval_seconds)
            except asyncio.TimeoutError:
                pass
        await self.wait_for_summary()
        return ticks
