"""Checkpoint persistence: a small JSON state file written atomically.

State is a single object with ISO-8601 timestamps. Writes go to a temp file in
the same directory and are moved into place with os.replace, so a crash never
leaves a half-written checkpoint behind.
"""

from __future__ import annotations

import os
import tempfile
from datetime import datetime
from pathlib import Path

import orjson

from .exceptions import ReqtailConfigError
from .logging_config import get_logger
from .models import Checkpoint

logger = get_logger("checkpoint")

CHECKPOINT_FIELDS = ("last_request_time", "last_summary_time", "last_run_time")


def checkpoint_to_dict(checkpoint: Checkpoint) -> dict[str, str | None]:
    out: dict[str, str | None] = {}
    for name in CHECKPOINT_FIELDS:
        value = getattr(checkpoint, name)
        out[name] = value.isoformat(timespec="seconds") if value is not None else None
    return out


def checkpoint_from_dict(data: dict[str, object]) -> Checkpoint:
    values: dict[str, datetime | None] = {}
    for name in CHECKPOINT_FIELDS:
        raw = data.get(name)
        if raw is None:
            values[name] = None
            continue
        if not isinstance(raw, str):
            raise ReqtailConfigError(
                f"Checkpoint field {name} must be a timestamp string",
                context={"actual_type": type(raw).__name__},
            )
        try:
            values[name] = datetime.fromisoformat(raw).replace(tzinfo=None)
        except ValueError as e:
            raise ReqtailConfigError(
                f"Invalid checkpoint timestamp for {name}: {raw!r}",
                original_error=e,
            ) from e
    return Checkpoint(**values)


class FileCheckpointStore:
    """Loads and saves a Checkpoint as JSON at path."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> Checkpoint:
        """Stored checkpoint, or an empty one if the file does not exist yet.

        Raises:
            ReqtailConfigError: If the file cannot be read or is not a valid checkpoint
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            logger.debug("No checkpoint at %s; starting fresh", self.path)
            return Checkpoint()
        except OSError as e:
            raise ReqtailConfigError(
                f"Cannot read checkpoint file: {e}",
                context={"path": str(self.path)},
                original_error=e,
            ) from e
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise ReqtailConfigError(
                f"Invalid JSON in checkpoint file: {e}",
                context={"path": str(self.path)},
                original_error=e,
            ) from e
        if not isinstance(data, dict):
            raise ReqtailConfigError(
                "Checkpoint file must hold a JSON object",
                context={"path": str(self.path), "actual_type": type(data).__name__},
            )
        return checkpoint_from_dict(data)

    def save(self, checkpoint: Checkpoint) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        payload = orjson.dumps(checkpoint_to_dict(checkpoint), option=orjson.OPT_INDENT_2)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".reqtail-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except Exception:
            os.unlink(tmp)
            raise
        logger.debug("Saved checkpoint to %s", self.path, extra={"state_file": str(self.path)})
