"""
reqtail - Incremental slow-request monitor for Rails request logs.

Reads a growing log from its tail, pairs "Processing" and "Completed" lines
into request events, and never counts a request twice across invocations.
Rates, slow-request alerts and a daily per-action summary.
"""

from .exceptions import (
    LogNotFoundError,
    ReqtailConfigError,
    ReqtailError,
    ReqtailSummaryError,
    TimestampError,
)

__all__ = [
    "__version__",
    "LogNotFoundError",
    "ReqtailConfigError",
    "ReqtailError",
    "ReqtailSummaryError",
    "TimestampError",
]

__version__ = "1.0.0"
