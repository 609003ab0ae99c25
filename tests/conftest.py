"""Pytest fixtures for reqtail tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest


def _processing(ts: str, action: str = "FooController#bar") -> str:
    return f"Processing {action} (for 127.0.0.1 at {ts}) [GET]"


def _completed_ms(ms: int, label: str = "http://example.com/foo", status: int = 200) -> str:
    return f"Completed in {ms}ms (View: 10, DB: 2) | {status} OK [{label}]"


def _completed_s(seconds: str, label: str = "http://example.com/foo", status: int = 200) -> str:
    return f"Completed in {seconds} (8 reqs/sec) | Rendering: 0.01 (10%) | DB: 0.002 (2%) | {status} OK [{label}]"


def _request_lines(ts: str, ms: int, label: str = "http://example.com/foo", action: str = "FooController#bar") -> list[str]:
    return [
        _processing(ts, action),
        '  Parameters: {"action"=>"bar", "controller"=>"foo"}',
        _completed_ms(ms, label),
        "",
    ]


@pytest.fixture
def processing_line() -> Callable[..., str]:
    """Build a "Processing ... at <ts>)" line."""
    return _processing


@pytest.fixture
def completed_line() -> Callable[..., str]:
    """Build a Rails 2.2 "Completed in <n>ms" line."""
    return _completed_ms


@pytest.fixture
def completed_seconds_line() -> Callable[..., str]:
    """Build a Rails 2.1 "Completed in <seconds>" line."""
    return _completed_s


@pytest.fixture
def request_lines() -> Callable[..., list[str]]:
    """Build the lines Rails writes for one request, oldest first."""
    return _request_lines


@pytest.fixture
def write_log(tmp_path: Path) -> Callable[..., Path]:
    """Write lines (oldest first) to a log file and return its path."""

    def _write(lines: list[str], name: str = "production.log", newline: str = "\n", trailing: bool = True) -> Path:
        p = tmp_path / name
        text = newline.join(lines)
        if trailing and lines:
            text += newline
        p.write_bytes(text.encode("utf-8"))
        return p

    return _write


@pytest.fixture
def example_log(write_log: Callable[..., Path]) -> Path:
    """Single slow request from the reference scenario."""
    return write_log([
        "Processing FooController#bar at 2024-01-15 10:00:00)",
        "Completed in 5000ms ... [/foo]",
    ])


@pytest.fixture
def busy_log(write_log: Callable[..., Path]) -> Path:
    """Five requests one minute apart, 10:00..10:04; the 10:02 one is slow."""
    lines: list[str] = []
    durations = [120, 340, 4500, 80, 900]
    for i, ms in enumerate(durations):
        lines += _request_lines(f"2024-01-15 10:0{i}:00", ms, label=f"http://example.com/r{i}")
    return write_log(lines)
