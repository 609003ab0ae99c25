"""CLI entry point for reqtail.

Three modes:
- one-shot (default): scan once, persist the checkpoint, print the result
- --watch: scan every interval_seconds; daily summary in the background
- --summary: summarize an explicit window without touching the checkpoint
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Coroutine

# uvloop gives a faster event loop for --watch where available
_HAS_UVLOOP = False
try:
    import uvloop
    _HAS_UVLOOP = True
except ImportError:
    pass

from rich.console import Console

from . import __version__
from .checkpoint import FileCheckpointStore
from .config import load_config, parse_summary_format, validate_monitor_config
from .display import print_result
from .exceptions import ReqtailConfigError, ReqtailError
from .logging_config import get_logger, set_log_level
from .models import InvocationResult, MonitorConfig, Summary
from .monitor import Monitor, generate_summary, run_invocation
from .report import generate_json_report, write_summary
from .timestamps import parse_timestamp

logger = get_logger("cli")

SUMMARY_DEFAULT_WINDOW = timedelta(days=1)


def _run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run async coroutine with uvloop when installed, asyncio otherwise."""
    if _HAS_UVLOOP:
        return uvloop.run(coro)
    return asyncio.run(coro)


def _stdout_is_tty() -> bool:
    """True if stdout is a TTY (interactive terminal). False in Docker without -it, CI, pipes."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _build_config(args: argparse.Namespace) -> MonitorConfig:
    """Load config from -f (if given) and apply CLI overrides."""
    base = load_config(args.config) if args.config else MonitorConfig(log_path=None)
    overrides: dict[str, Any] = {}
    if args.log is not None:
        overrides["log_path"] = args.log
    if args.max_request_length is not None:
        overrides["max_request_length"] = args.max_request_length
    if args.ignored_actions is not None:
        overrides["ignored_actions"] = args.ignored_actions or None
    if args.run_time is not None:
        overrides["summary_run_time"] = args.run_time
    if args.state is not None:
        overrides["state_file"] = args.state
    if args.summary_dir is not None:
        overrides["summary_dir"] = args.summary_dir
    if args.summary_format is not None:
        overrides["summary_format"] = parse_summary_format(args.summary_format)
    if args.interval is not None:
        overrides["interval_seconds"] = args.interval
    config = replace(base, **overrides) if overrides else base
    validate_monitor_config(config)
    return config


def _parse_window_arg(value: str | None, default: datetime) -> datetime:
    if value is None:
        return default
    return parse_timestamp(value)


def _emit_summary(console: Console, config: MonitorConfig, summary: Summary) -> None:
    if config.summary_dir:
        path = write_summary(config.summary_dir, summary, config.summary_format)
        console.print(f"[green]Summary written to[/green] {path}")
        return
    console.print(summary.output, markup=False, highlight=False)


def _exit_code(result: InvocationResult) -> int:
    return 0 if result.ok else 1


def _check_mode_flags(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Reject flags that have no effect in the selected mode (exits 2)."""
    if args.summary and args.watch:
        parser.error("--summary and --watch cannot be combined")
    if not args.summary and (args.after is not None or args.before is not None):
        parser.error("--after/--before require --summary")
    if args.summary and args.json_path:
        parser.error("--json is not available with --summary")
    if args.iterations is not None and not args.watch:
        parser.error("--iterations requires --watch")


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="reqtail",
        description="Incremental slow-request monitor for Rails request logs. "
        "Counts each request once across runs, reports rates and slow requests.",
    )
    parser.add_argument(
        "-f",
        "--config",
        default=None,
        help="Path to YAML config (optional: use --log etc. without -f)",
    )
    parser.add_argument("--log", default=None, help="Override config: full path to the Rails log file")
    parser.add_argument("--max-request-length", type=float, default=None, metavar="SEC", dest="max_request_length", help="Override config: slow request threshold in seconds (0 disables alerts)")
    parser.add_argument("--ignored-actions", default=None, metavar="REGEX", dest="ignored_actions", help="Override config: labels matching REGEX never count as slow")
    parser.add_argument("--run-time", default=None, metavar="HH:MM", dest="run_time", help="Override config: daily summary time (default 23:45)")
    parser.add_argument("--state", default=None, metavar="PATH", help="Override config: checkpoint state file")
    parser.add_argument("--summary-dir", default=None, metavar="DIR", dest="summary_dir", help="Override config: write daily summaries to DIR")
    parser.add_argument("--summary-format", choices=["html", "text"], default=None, dest="summary_format", help="Override config: summary format")
    parser.add_argument(
        "--json",
        metavar="PATH",
        dest="json_path",
        help="Also write the invocation result to PATH as JSON (rewritten after every scan with --watch)",
    )
    parser.add_argument(
        "-w",
        "--watch",
        action="store_true",
        help="Keep running: scan every --interval seconds until interrupted",
    )
    parser.add_argument("--interval", type=float, default=None, metavar="SEC", help="Override config: seconds between scans in --watch mode")
    parser.add_argument("--iterations", type=int, default=None, metavar="N", help="Stop --watch after N scans")
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print a summary for --after/--before (default: last 24h) and exit; checkpoint untouched",
    )
    parser.add_argument("--after", default=None, metavar="TIMESTAMP", help="Summary window start (YYYY-MM-DD HH:MM:SS)")
    parser.add_argument("--before", default=None, metavar="TIMESTAMP", help="Summary window end (YYYY-MM-DD HH:MM:SS)")
    parser.add_argument(
        "--no-live",
        action="store_true",
        help="Plain one-line output instead of Rich panels",
    )
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"reqtail {__version__}",
    )
    args = parser.parse_args()
    _check_mode_flags(parser, args)
    if args.debug:
        set_log_level("DEBUG")

    console = Console()

    def handle_error(e: BaseException) -> int:
        if isinstance(e, ReqtailError):
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        if isinstance(e, (FileNotFoundError, ValueError)):
            print(f"Error: {e}", file=sys.stderr)
            return 1
        logger.exception("Unexpected error")
        print("Error: An unexpected error occurred. Check logs for details.", file=sys.stderr)
        return 1

    try:
        config = _build_config(args)
    except ReqtailConfigError as e:
        return handle_error(e)

    rich_output = not args.no_live and _stdout_is_tty()

    if args.summary:
        if not config.log_path:
            print("Error: --summary requires --log or a config with log", file=sys.stderr)
            return 1
        try:
            now = datetime.now()
            before = _parse_window_arg(args.before, now)
            after = _parse_window_arg(args.after, before - SUMMARY_DEFAULT_WINDOW)
            summary = generate_summary(config, after, before)
            _emit_summary(console, config, summary)
        except Exception as e:
            return handle_error(e)
        return 0

    store = FileCheckpointStore(config.state_file)

    if args.watch:
        def on_result(result: InvocationResult) -> None:
            print_result(console, result, config, rich_output=rich_output)
            if args.json_path:
                # latest tick wins
                try:
                    generate_json_report(Path(args.json_path), result)
                except OSError:
                    logger.exception("Cannot write JSON report to %s", args.json_path)

        def on_summary(summary: Summary) -> None:
            if not config.summary_dir:
                console.print(summary.output, markup=False, highlight=False)

        monitor = Monitor(config, store, on_result=on_result, on_summary=on_summary)
        monitor.install_signal_handlers()
        try:
            ticks = _run_async(monitor.watch(iterations=args.iterations))
        except KeyboardInterrupt:
            print("\nInterrupted.", file=sys.stderr)
            return 130
        except Exception as e:
            return handle_error(e)
        logger.info("Watch stopped after %d scan(s)", ticks)
        return 0

    try:
        checkpoint = store.load()
        result = run_invocation(config, checkpoint)
        if result.checkpoint != checkpoint:
            store.save(result.checkpoint)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        return handle_error(e)

    print_result(console, result, config, rich_output=rich_output)
    if result.summary is not None:
        try:
            _emit_summary(console, config, result.summary)
        except ReqtailError as e:
            return handle_error(e)
    if args.json_path:
        path = generate_json_report(Path(args.json_path), result)
        if rich_output:
            console.print(f"[dim]JSON report:[/dim] {path}")
    return _exit_code(result)


if __name__ == "__main__":
    sys.exit(main())
