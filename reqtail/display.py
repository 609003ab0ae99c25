"""Rich console output for invocation results."""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import InvocationResult, MessageLevel, MonitorConfig, RunReport
from .timestamps import format_timestamp


def _fmt_rate(value: float) -> str:
    return f"{value:.2f}/min"


def build_report_table(report: RunReport | None) -> Table:
    """Build a single Rich table with the invocation's metrics."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")

    if report is None:
        table.add_row("Requests", "-")
        table.add_row("Request rate", "-")
        table.add_row("Slow request rate", "-")
        table.add_row("Avg duration", "-")
        table.add_row("Slow %", "-")
        return table

    table.add_row("Requests", str(report.request_count))
    table.add_row("Slow requests", str(report.slow_request_count))
    table.add_row("Request rate", _fmt_rate(report.request_rate_per_minute))
    table.add_row("Slow request rate", _fmt_rate(report.slow_request_rate_per_minute))
    avg = report.average_duration_seconds
    table.add_row("Avg duration", f"{avg:.2f}s" if avg is not None else "-")
    table.add_row("Slow %", f"{report.slow_request_percentage:.2f}%")
    table.add_row("Interval", f"{report.interval_seconds:.0f}s")
    return table


def create_result_panel(result: InvocationResult, config: MonitorConfig) -> Panel:
    """Create Rich Panel summarizing one invocation."""
    table = build_report_table(result.report)
    last = result.checkpoint.last_request_time
    table.add_row("Checkpoint", format_timestamp(last) if last is not None else "-")
    parts: list[Table | Text | Panel] = [table]
    for message in result.messages:
        style = "bold red" if message.level is MessageLevel.ERROR else "yellow"
        parts.append(Text(f"{message.level.value}: {message.title}", style=style))
    if result.alert is not None:
        parts.append(
            Panel(Text(result.alert.body.rstrip()), title=result.alert.title, border_style="red")
        )
    if result.summary is not None:
        parts.append(Text(f"Daily summary: {result.summary.command}", style="dim"))
    title = Text()
    title.append("reqtail ", style="bold magenta")
    title.append(f"| {config.log_path or '-'}", style="dim")
    title.append(f" | threshold {config.max_request_length:g}s", style="bold yellow")
    return Panel(
        Group(*parts),
        title=title,
        border_style="red" if not result.ok else "blue",
    )


def format_status_line(result: InvocationResult) -> str:
    """One line per invocation for non-TTY output (Docker, CI, pipes)."""
    report = result.report
    if report is None:
        errors = "; ".join(m.title for m in result.messages) or "no report"
        return f"reqtail | error: {errors}\n"
    avg = report.average_duration_seconds
    avg_str = f"{avg:.2f}s" if avg is not None else "-"
    return (
        f"reqtail | requests={report.request_count} slow={report.slow_request_count} "
        f"rate={report.request_rate_per_minute:.2f}/min slow_rate={report.slow_request_rate_per_minute:.2f}/min "
        f"avg={avg_str} slow%={report.slow_request_percentage:.2f}\n"
    )


def print_result(console: Console, result: InvocationResult, config: MonitorConfig, rich_output: bool = True) -> None:
    if rich_output:
        console.print(create_result_panel(result, config))
        return
    console.file.write(format_status_line(result))
    console.file.flush()
