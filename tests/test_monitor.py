"""Tests for run_invocation and the long-running Monitor."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO

import pytest

from reqtail import monitor as monitor_mod
from reqtail.exceptions import ReqtailConfigError
from reqtail.models import Checkpoint, InvocationResult, MessageLevel, MonitorConfig, Summary
from reqtail.monitor import (
    LOG_NOT_FOUND_TITLE,
    MISSING_LOG_TITLE,
    Monitor,
    begin_summary,
    compile_ignored_actions,
    generate_summary,
    run_invocation,
    summary_command,
)

NOW = datetime(2024, 1, 15, 10, 1, 0)
SUMMARY_NOW = datetime(2024, 1, 15, 23, 50, 0)


class MemoryStore:
    def __init__(self, checkpoint: Checkpoint | None = None) -> None:
        self.checkpoint = checkpoint or Checkpoint()
        self.saved: list[Checkpoint] = []

    def load(self) -> Checkpoint:
        return self.checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        self.checkpoint = checkpoint
        self.saved.append(checkpoint)


class FailingStore(MemoryStore):
    def load(self) -> Checkpoint:
        raise ReqtailConfigError("Invalid JSON in checkpoint file")


def _recording_analyzer(calls: list[tuple[datetime, datetime, bytes]]):
    def analyzer(after: datetime, before: datetime, source: BinaryIO) -> str:
        calls.append((after, before, source.read()))
        return f"summary {after:%H:%M} {before:%H:%M}"

    return analyzer


def _steady_checkpoint(last_request_time: datetime) -> Checkpoint:
    return Checkpoint(
        last_request_time=last_request_time,
        last_summary_time=NOW,
        last_run_time=NOW - timedelta(seconds=60),
    )


def test_compile_ignored_actions() -> None:
    assert compile_ignored_actions(None) == (None, None)
    assert compile_ignored_actions("  ") == (None, None)
    pattern, warning = compile_ignored_actions(r"/reports/")
    assert pattern is not None and warning is None


def test_compile_ignored_actions_invalid() -> None:
    pattern, warning = compile_ignored_actions("([")
    assert pattern is None
    assert warning is not None
    assert warning.level is MessageLevel.WARNING
    assert "([" in warning.detail


def test_slow_request_invocation(example_log: Path) -> None:
    config = MonitorConfig(log_path=str(example_log))
    checkpoint = _steady_checkpoint(datetime(2024, 1, 15, 9, 59, 59))
    result = run_invocation(config, checkpoint, now=NOW)
    assert result.ok
    assert result.report is not None
    assert result.report.request_count == 1
    assert result.report.slow_request_count == 1
    assert result.report.average_duration_seconds == 5.0
    assert result.report.request_rate_per_minute == 1.0
    assert result.report.slow_request_percentage == 100.0
    assert result.alert is not None
    assert result.alert.title == "Maximum Time(3 sec) exceeded on 1 request"
    assert result.alert.body == "/foo\nCompleted in 5000ms ...\n\n"
    assert result.checkpoint.last_request_time == datetime(2024, 1, 15, 10, 0, 0)
    assert result.checkpoint.last_run_time == NOW
    assert result.summary is None


def test_repeat_invocation_counts_nothing(example_log: Path) -> None:
    config = MonitorConfig(log_path=str(example_log))
    first = run_invocation(config, _steady_checkpoint(datetime(2024, 1, 15, 9, 59, 59)), now=NOW)
    second = run_invocation(config, first.checkpoint, now=NOW + timedelta(seconds=60))
    assert second.report is not None
    assert second.report.request_count == 0
    assert second.report.average_duration_seconds is None
    assert second.alert is None
    assert second.checkpoint.last_request_time == first.checkpoint.last_request_time


def test_first_invocation_bootstraps(example_log: Path) -> None:
    config = MonitorConfig(log_path=str(example_log))
    now = datetime(2024, 1, 15, 10, 0, 30)
    result = run_invocation(config, Checkpoint(), now=now)
    assert result.report is not None
    assert result.report.request_count == 1
    assert result.report.interval_seconds == 60.0
    assert result.checkpoint.last_summary_time == now
    assert result.summary is None


def test_missing_log_path() -> None:
    checkpoint = _steady_checkpoint(datetime(2024, 1, 15, 9, 0, 0))
    result = run_invocation(MonitorConfig(log_path=None), checkpoint, now=NOW)
    assert not result.ok
    assert not result.file_found
    assert result.messages[0].title == MISSING_LOG_TITLE
    assert result.checkpoint == checkpoint
    assert result.report is None


def test_log_not_found_skips_summary(tmp_path: Path) -> None:
    calls: list[tuple[datetime, datetime, bytes]] = []
    checkpoint = Checkpoint(
        last_request_time=datetime(2024, 1, 15, 9, 0, 0),
        last_summary_time=datetime(2024, 1, 14, 23, 45, 0),
    )
    config = MonitorConfig(log_path=str(tmp_path / "missing.log"))
    result = run_invocation(config, checkpoint, now=SUMMARY_NOW, analyzer=_recording_analyzer(calls))
    assert not result.file_found
    assert result.messages[0].title == LOG_NOT_FOUND_TITLE
    assert str(tmp_path / "missing.log") in result.messages[0].detail
    assert result.checkpoint == checkpoint
    assert calls == []


def test_invalid_ignored_actions_is_warning(busy_log: Path) -> None:
    config = MonitorConfig(log_path=str(busy_log), ignored_actions="([")
    result = run_invocation(config, _steady_checkpoint(datetime(2024, 1, 15, 9, 0, 0)), now=NOW)
    assert result.ok
    assert result.messages[0].level is MessageLevel.WARNING
    assert result.report is not None
    assert result.report.request_count == 5
    assert result.report.slow_request_count == 1


def test_ignored_actions_applied(busy_log: Path) -> None:
    config = MonitorConfig(log_path=str(busy_log), ignored_actions=r"/r2\Z")
    result = run_invocation(config, _steady_checkpoint(datetime(2024, 1, 15, 9, 0, 0)), now=NOW)
    assert result.report is not None
    assert result.report.slow_request_count == 0
    assert result.report.request_count == 5
    assert result.report.average_duration_seconds == pytest.approx(5.94 / 5)
    assert result.report.metrics()["average_duration_seconds"] == 1.19
    assert result.alert is None


def test_scan_failure_keeps_checkpoint(example_log: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(*args: object, **kwargs: object) -> None:
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(monitor_mod, "scan_log", boom)
    checkpoint = _steady_checkpoint(datetime(2024, 1, 15, 9, 0, 0))
    result = run_invocation(MonitorConfig(log_path=str(example_log)), checkpoint, now=NOW)
    assert not result.ok
    assert result.messages[0].title == "RuntimeError:  disk on fire"
    assert "Traceback" in result.messages[0].detail
    assert result.checkpoint == checkpoint
    assert result.report is None


def test_begin_summary_first_run_records_time() -> None:
    config = MonitorConfig(log_path="x.log")
    checkpoint, window = begin_summary(config, Checkpoint(), SUMMARY_NOW)
    assert window is None
    assert checkpoint.last_summary_time == SUMMARY_NOW


def test_begin_summary_not_due() -> None:
    config = MonitorConfig(log_path="x.log")
    before = Checkpoint(last_summary_time=datetime(2024, 1, 14, 23, 45))
    checkpoint, window = begin_summary(config, before, datetime(2024, 1, 15, 12, 0))
    assert window is None
    assert checkpoint == before


def test_begin_summary_custom_run_time() -> None:
    config = MonitorConfig(log_path="x.log", summary_run_time="06:00")
    last = datetime(2024, 1, 14, 6, 0)
    checkpoint, window = begin_summary(config, Checkpoint(last_summary_time=last), datetime(2024, 1, 15, 6, 1))
    assert window == (last, datetime(2024, 1, 15, 6, 1))
    assert checkpoint.last_summary_time == datetime(2024, 1, 15, 6, 1)


def test_summary_command() -> None:
    cmd = summary_command("/var/log/production.log", datetime(2024, 1, 14, 23, 45), datetime(2024, 1, 15, 23, 50))
    assert cmd == (
        "reqtail --summary --after '2024-01-14 23:45:00' --before '2024-01-15 23:50:00' "
        "--log '/var/log/production.log'"
    )


def test_summary_runs_when_due(busy_log: Path) -> None:
    calls: list[tuple[datetime, datetime, bytes]] = []
    last_summary = datetime(2024, 1, 14, 23, 45, 0)
    checkpoint = Checkpoint(
        last_request_time=datetime(2024, 1, 15, 10, 4, 0),
        last_summary_time=last_summary,
        last_run_time=SUMMARY_NOW - timedelta(minutes=1),
    )
    config = MonitorConfig(log_path=str(busy_log))
    result = run_invocation(config, checkpoint, now=SUMMARY_NOW, analyzer=_recording_analyzer(calls))
    assert result.ok
    assert result.summary is not None
    assert result.summary.output == "summary 23:45 23:50"
    assert result.summary.window_start == last_summary
    assert result.summary.window_end == SUMMARY_NOW
    assert "--after '2024-01-14 23:45:00'" in result.summary.command
    assert result.checkpoint.last_summary_time == SUMMARY_NOW
    # the locator found the first in-window request: the source starts at the top of the file
    assert calls[0][2] == busy_log.read_bytes()


def test_summary_failure_is_reported(busy_log: Path) -> None:
    def broken(after: datetime, before: datetime, source: BinaryIO) -> str:
        raise ValueError("analyzer crashed")

    checkpoint = Checkpoint(
        last_request_time=datetime(2024, 1, 15, 10, 4, 0),
        last_summary_time=datetime(2024, 1, 14, 23, 45, 0),
    )
    result = run_invocation(MonitorConfig(log_path=str(busy_log)), checkpoint, now=SUMMARY_NOW, analyzer=broken)
    assert result.summary is None
    assert result.messages[-1].title == "ValueError:  analyzer crashed"
    # not retried on the next tick
    assert result.checkpoint.last_summary_time == SUMMARY_NOW
    assert result.report is not None


def test_generate_summary_positions_source(busy_log: Path) -> None:
    calls: list[tuple[datetime, datetime, bytes]] = []
    config = MonitorConfig(log_path=str(busy_log))
    summary = generate_summary(
        config, datetime(2024, 1, 15, 10, 3, 0), datetime(2024, 1, 15, 11, 0, 0), _recording_analyzer(calls)
    )
    assert summary.output == "summary 10:03 11:00"
    assert calls[0][2].startswith(b"Processing FooController#bar (for 127.0.0.1 at 2024-01-15 10:03:00)")


def test_generate_summary_requires_log() -> None:
    with pytest.raises(ReqtailConfigError):
        generate_summary(MonitorConfig(log_path=None), datetime(2024, 1, 15), datetime(2024, 1, 16))


def test_monitor_tick_saves_checkpoint(example_log: Path) -> None:
    store = MemoryStore(_steady_checkpoint(datetime(2024, 1, 15, 9, 59, 59)))

    async def run() -> InvocationResult:
        monitor = Monitor(MonitorConfig(log_path=str(example_log)), store)
        return await monitor.tick(now=NOW)

    result = asyncio.run(run())
    assert result.report is not None
    assert result.report.request_count == 1
    assert store.saved == [result.checkpoint]
    assert store.checkpoint.last_request_time == datetime(2024, 1, 15, 10, 0, 0)


def test_monitor_tick_load_failure() -> None:
    async def run() -> InvocationResult:
        monitor = Monitor(MonitorConfig(log_path="x.log"), FailingStore())
        return await monitor.tick(now=NOW)

    result = asyncio.run(run())
    assert not result.ok
    assert "Invalid JSON" in result.messages[0].title


def test_monitor_runs_summary_in_background(busy_log: Path, tmp_path: Path) -> None:
    calls: list[tuple[datetime, datetime, bytes]] = []
    summaries: list[Summary] = []
    store = MemoryStore(Checkpoint(
        last_request_time=datetime(2024, 1, 15, 10, 4, 0),
        last_summary_time=datetime(2024, 1, 14, 23, 45, 0),
    ))
    config = MonitorConfig(log_path=str(busy_log), summary_dir=str(tmp_path / "summaries"))

    async def run() -> Summary | None:
        monitor = Monitor(config, store, analyzer=_recording_analyzer(calls), on_summary=summaries.append)
        result = await monitor.tick(now=SUMMARY_NOW)
        assert result.summary is None
        return await monitor.wait_for_summary()

    summary = asyncio.run(run())
    assert summary is not None
    assert summaries == [summary]
    assert store.checkpoint.last_summary_time == SUMMARY_NOW
    written = tmp_path / "summaries" / "summary_20240115_235000.html"
    assert written.exists()
    assert "summary 23:45 23:50" in written.read_text()


def test_monitor_watch_iterations(example_log: Path) -> None:
    store = MemoryStore()
    results: list[InvocationResult] = []
    config = MonitorConfig(log_path=str(example_log), interval_seconds=0.01)

    async def run() -> int:
        monitor = Monitor(config, store, on_result=results.append)
        return await monitor.watch(iterations=2)

    assert asyncio.run(run()) == 2
    assert len(results) == 2
    assert len(store.saved) == 2
    assert all(r.report is not None and r.report.request_count == 0 for r in results)


def test_monitor_stop_before_watch(example_log: Path) -> None:
    async def run() -> int:
        monitor = Monitor(MonitorConfig(log_path=str(example_log)), MemoryStore())
        monitor.stop()
        return await monitor.watch()

    assert asyncio.run(run()) == 0
