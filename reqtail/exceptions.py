"""Custom exceptions for reqtail.

All reqtail-specific exceptions inherit from ReqtailError for unified error handling.
Each exception preserves the original cause chain for debugging.
"""

from __future__ import annotations

from typing import Any


class ReqtailError(Exception):
    """Base exception for all reqtail errors.

    Attributes:
        message: Human-readable error description
        context: Optional dictionary with additional debugging context
        original_error: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        *args: object,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, *args)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            base = f"{base} [{ctx_str}]"
        if self.original_error:
            base = f"{base} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base

    def with_context(self, **kwargs: Any) -> "ReqtailError":
        """Add context to this error and return self for chaining."""
        self.context.update(kwargs)
        return self


class ReqtailConfigError(ReqtailError):
    """Raised when configuration or the checkpoint state file is invalid.

    Common causes:
    - Config file not found
    - Invalid YAML syntax
    - Invalid field values (e.g., max_request_length < 0)
    - Corrupt checkpoint state file
    """


class LogNotFoundError(ReqtailError):
    """Raised when the request log does not exist.

    Kept apart from every other failure: a missing log also suppresses
    the daily summary for the current cycle.
    """

    @property
    def path(self) -> str | None:
        return self.context.get("path")


class TimestampError(ReqtailError):
    """Raised when a log timestamp cannot be parsed into a calendar time."""

    @property
    def raw(self) -> str | None:
        return self.context.get("raw")


class ReqtailSummaryError(ReqtailError):
    """Raised when the daily summary cannot be generated or written."""
