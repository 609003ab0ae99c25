"""YAML configuration loader for reqtail monitors."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ReqtailConfigError
from .logging_config import get_logger
from .models import MonitorConfig, SummaryFormat

logger = get_logger("config")


def _validate_monitor_config(c: MonitorConfig) -> None:
    """Validate MonitorConfig bounds. Raises ReqtailConfigError if invalid."""
    if c.max_request_length < 0:
        raise ReqtailConfigError("max_request_length must be >= 0")
    if c.interval_seconds <= 0:
        raise ReqtailConfigError("interval_seconds must be > 0")
    if c.chunk_size < 1:
        raise ReqtailConfigError("chunk_size must be >= 1")
    if c.summary_max_scan_bytes < 1:
        raise ReqtailConfigError("summary_max_scan_bytes must be >= 1")
    if c.summary_max_scan_seconds <= 0:
        raise ReqtailConfigError("summary_max_scan_seconds must be > 0")
    if not c.state_file:
        raise ReqtailConfigError("state_file must not be empty")


def load_config(path: str | Path) -> MonitorConfig:
    """Load monitor configuration from YAML file.

    The log path may be left out here and supplied on the command line; it is
    checked when the monitor runs.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated MonitorConfig instance

    Raises:
        ReqtailConfigError: If file not found, invalid YAML, or validation fails
    """
    p = Path(path)
    if not p.exists():
        raise ReqtailConfigError(
            f"Config file not found: {path}",
            context={"path": str(path)}
        )

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.exception("Failed to parse YAML config file")
        raise ReqtailConfigError(
            f"Invalid YAML syntax in config file: {e}",
            context={"path": str(path)},
            original_error=e
        ) from e
    except OSError as e:
        logger.exception("Failed to read config file")
        raise ReqtailConfigError(
            f"Cannot read config file: {e}",
            context={"path": str(path)},
            original_error=e
        ) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ReqtailConfigError(
            "Config must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__}
        )

    defaults = MonitorConfig(log_path=None)
    try:
        config = MonitorConfig(
            log_path=_optional_str(raw, "log"),
            max_request_length=float(raw.get("max_request_length", defaults.max_request_length)),
            ignored_actions=_optional_str(raw, "ignored_actions"),
            # rla_run_time is the key older deployments used
            summary_run_time=str(raw.get("summary_run_time", raw.get("rla_run_time", defaults.summary_run_time))),
            state_file=str(raw.get("state_file", defaults.state_file)),
            summary_dir=_optional_str(raw, "summary_dir"),
            summary_format=parse_summary_format(raw.get("summary_format")),
            interval_seconds=float(raw.get("interval_seconds", defaults.interval_seconds)),
            summary_max_scan_bytes=int(raw.get("summary_max_scan_bytes", defaults.summary_max_scan_bytes)),
            summary_max_scan_seconds=float(raw.get("summary_max_scan_seconds", defaults.summary_max_scan_seconds)),
            chunk_size=int(raw.get("chunk_size", defaults.chunk_size)),
        )
    except (TypeError, ValueError) as e:
        raise ReqtailConfigError(
            f"Invalid config value: {e}",
            context={"path": str(path)},
            original_error=e
        ) from e

    _validate_monitor_config(config)
    logger.debug(
        "Loaded config: log=%s, max_request_length=%s, summary_run_time=%s",
        config.log_path, config.max_request_length, config.summary_run_time,
    )
    return config


def validate_monitor_config(config: MonitorConfig) -> None:
    """Validate MonitorConfig. Raises ReqtailConfigError if invalid."""
    _validate_monitor_config(config)


def parse_summary_format(value: Any) -> SummaryFormat:
    fmt_str = (str(value) if value is not None else "html").strip().lower()
    try:
        return SummaryFormat(fmt_str)
    except ValueError:
        logger.debug("Unknown summary_format '%s', defaulting to 'html'", fmt_str)
        return SummaryFormat.HTML


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    v = data.get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None
