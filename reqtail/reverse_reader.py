"""Chunked reverse line reader with byte-offset tracking.

Yields (line, start_offset) from the last line of a file to the first. Each
step reads one fixed-size chunk from further back in the file, so the cost of
a scan is proportional to how far back it goes, not to the file size.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO, Iterator

from .exceptions import LogNotFoundError
from .logging_config import get_logger

logger = get_logger("reverse_reader")

DEFAULT_CHUNK_SIZE = 64 * 1024


class ReverseLineReader:
    """Lazy, single-pass iterator over a file's lines, newest (last) first.

    position is the absolute byte offset of the start of the line most recently
    yielded, so a caller can later seek there and read forward. A trailing
    newline does not produce an empty last line; a trailing "\\r" is stripped
    so CRLF and LF files read the same.

    Raises:
        LogNotFoundError: On construction, if path does not exist
    """

    __slots__ = ("path", "position", "_chunk_size", "_encoding", "_fh", "_lines")

    def __init__(
        self,
        path: str | Path,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        encoding: str = "utf-8",
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.path = Path(path)
        self._chunk_size = chunk_size
        self._encoding = encoding
        try:
            self._fh: BinaryIO | None = open(self.path, "rb")
        except FileNotFoundError as e:
            raise LogNotFoundError(
                f"Log file not found: {path}",
                context={"path": str(path)},
                original_error=e,
            ) from e
        self._fh.seek(0, os.SEEK_END)
        self.position: int = self._fh.tell()
        self._lines = self._iter_lines()

    def __iter__(self) -> "ReverseLineReader":
        return self

    def __next__(self) -> tuple[str, int]:
        return next(self._lines)

    def __enter__(self) -> "ReverseLineReader":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._lines.close()
        self._close_handle()

    def _decode(self, raw: bytes) -> str:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        return raw.decode(self._encoding, errors="replace")

    def _iter_lines(self) -> Iterator[tuple[str, int]]:
        fh = self._fh
        if fh is None:
            return
        pos = self.position
        if pos == 0:
            self._close_handle()
            return
        # Bytes [pos, pos + len(head)) form a line whose start is not yet known.
        head = b""
        at_eof = True
        chunks = 0
        while pos > 0:
            read_size = min(self._chunk_size, pos)
            pos -= read_size
            fh.seek(pos)
            chunk = fh.read(read_size)
            chunks += 1
            if at_eof:
                at_eof = False
                if chunk.endswith(b"\n"):
                    chunk = chunk[:-1]
            parts = (chunk + head).split(b"\n")
            head = parts[0]
            if len(parts) == 1:
                continue
            starts: list[int] = []
            offset = pos + len(head) + 1
            for part in parts[1:]:
                starts.append(offset)
                offset += len(part) + 1
            for i in range(len(parts) - 1, 0, -1):
                self.position = starts[i - 1]
                yield self._decode(parts[i]), self.position
        logger.debug("Reached start of %s after %d chunk(s)", self.path, chunks)
        self.position = 0
        self._close_handle()
        yield self._decode(head), 0

    def _close_handle(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
