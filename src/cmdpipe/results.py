"""Value types describing one command execution."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .command import CommandInfo

__all__ = ["Stdio", "ExecutionInfo", "ExecutionResult", "utcnow"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Stdio(Enum):
    """The standard streams of a child process, valued by file descriptor."""

    STDIN = 0
    STDOUT = 1
    STDERR = 2

    @property
    def writable(self) -> bool:
        """Whether we write to this stream (only stdin)."""
        return self is Stdio.STDIN

    @property
    def readable(self) -> bool:
        return not self.writable

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ExecutionInfo:
    """Runtime facts about one process.

    Attributes:
        pid: Process id, -1 if the platform did not report one
        started_at: When the process was spawned (UTC)
        ended_at: When termination was observed, None while running
        exit_code: Exit status, None while running
        timeout_killed: Whether the process was killed because of the timeout
        stderr_snapshot: Default error recorder output, "" if it did not run
    """

    pid: int
    started_at: datetime
    ended_at: datetime | None = None
    exit_code: int | None = None
    timeout_killed: bool = False
    stderr_snapshot: str = ""

    @property
    def duration(self) -> timedelta | None:
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    @property
    def running(self) -> bool:
        return self.ended_at is None

    def finished(self, exit_code: int, ended_at: datetime | None = None) -> "ExecutionInfo":
        return replace(self, exit_code=exit_code, ended_at=ended_at or utcnow())

    def mark_timeout_killed(self) -> "ExecutionInfo":
        return replace(self, timeout_killed=True)

    def with_stderr_snapshot(self, snapshot: str) -> "ExecutionInfo":
        return replace(self, stderr_snapshot=snapshot)


@dataclass(frozen=True)
class ExecutionResult:
    """Successful outcome of a command.

    ``stdout_value`` is whatever the stdout handler returned (None without a
    handler). ``stderr_value`` is the stderr handler's return value, or the
    recorder snapshot when the default error recorder consumed stderr.
    """

    command_line: tuple[str, ...]
    exit_code: int
    stdout_value: Any
    stderr_value: Any
    command_info: "CommandInfo"
    execution_info: ExecutionInfo

    @property
    def stderr_snapshot(self) -> str:
        return self.execution_info.stderr_snapshot

    @property
    def duration(self) -> timedelta | None:
        return self.execution_info.duration

    @property
    def pid(self) -> int:
        return self.execution_info.pid

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def __repr__(self) -> str:
        return (
            f"ExecutionResult(command_line={list(self.command_line)!r}, "
            f"exit_code={self.exit_code}, pid={self.pid}, duration={self.duration})"
        )
