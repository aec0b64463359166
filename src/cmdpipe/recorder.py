"""Bounded stderr transcript used when no stderr handler is supplied.

The recorder keeps the first few lines and a rolling window of the last few
lines of a text stream, so a noisy child process can never make us buffer an
unbounded amount of diagnostic output.
"""

from __future__ import annotations

import io
import logging
from collections import deque
from typing import BinaryIO

from .config import get_config

__all__ = ["ErrorRecorder", "TRUNCATION_MARKER"]

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."

_READ_CHUNK = 8192


class ErrorRecorder:
    """Text sink retaining a head/tail snapshot of what was written to it.

    Lines are split on ``\\n``; ``\\r`` is dropped, every line is clamped to
    ``line_width`` characters and blank lines are ignored. The first ``head``
    lines are kept verbatim, after that only the last ``tail`` lines survive.
    When lines were discarded in between, ``str(recorder)`` puts a single
    ``...`` marker between the two groups.

    Example:
        recorder = ErrorRecorder(head=2, tail=2)
        with recorder:
            recorder.write("a\\nb\\nc\\nd\\ne\\n")
        str(recorder)  # "a\\nb\\n...\\nd\\ne"
    """

    def __init__(
        self,
        line_width: int | None = None,
        head: int | None = None,
        tail: int | None = None,
    ) -> None:
        config = get_config()
        self.line_width = line_width if line_width is not None else config.recorder_line_width
        self.head = head if head is not None else config.recorder_head_lines
        self.tail = tail if tail is not None else config.recorder_tail_lines
        if self.line_width < 0 or self.head < 0 or self.tail < 0:
            raise ValueError("line_width, head and tail must not be negative")

        self._buffer: list[str] = []
        self._buffered = 0
        self._head_lines: list[str] = []
        self._tail_lines: deque[str] = deque(maxlen=self.tail or None)
        self._dropped = 0
        self._closed = False

    def write(self, text: str) -> int:
        if self._closed:
            raise ValueError("write to closed ErrorRecorder")
        for ch in text:
            if ch == "\n":
                self._commit()
            elif ch == "\r":
                continue
            elif self._buffered < self.line_width:
                self._buffer.append(ch)
                self._buffered += 1
        return len(text)

    def flush(self) -> None:
        """Commit the pending partial line, if any."""
        self._commit()

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def truncated(self) -> bool:
        return self._dropped > 0

    @property
    def lines(self) -> list[str]:
        """The retained lines, including the marker if lines were dropped."""
        lines = list(self._head_lines)
        if self._dropped:
            lines.append(TRUNCATION_MARKER)
        lines.extend(self._tail_lines)
        return lines

    def _commit(self) -> None:
        if not self._buffer:
            return
        line = "".join(self._buffer)
        self._buffer.clear()
        self._buffered = 0
        if not line.strip():
            return
        if len(self._head_lines) < self.head:
            self._head_lines.append(line)
            return
        if self.tail == 0:
            self._dropped += 1
            return
        if len(self._tail_lines) == self.tail:
            self._dropped += 1
        self._tail_lines.append(line)

    def record_stream(self, stream: BinaryIO, encoding: str) -> str:
        """Decode ``stream`` until EOF into the recorder and return the snapshot."""
        reader = io.TextIOWrapper(stream, encoding=encoding, errors="replace", newline="")
        try:
            while True:
                chunk = reader.read(_READ_CHUNK)
                if not chunk:
                    break
                self.write(chunk)
        finally:
            # detach so closing the reader does not close the caller's stream twice
            try:
                reader.detach()
            except ValueError:
                pass
            self.close()
        return str(self)

    def __enter__(self) -> "ErrorRecorder":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __str__(self) -> str:
        return "\n".join(self.lines)

    def __repr__(self) -> str:
        return (
            f"ErrorRecorder(head={len(self._head_lines)}/{self.head}, "
            f"tail={len(self._tail_lines)}/{self.tail}, dropped={self._dropped})"
        )
