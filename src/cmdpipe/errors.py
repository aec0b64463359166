"""cmdpipe exception classes.

cmdpipe errors v0.1.0
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .formatting import format_failure

if TYPE_CHECKING:
    from .command import CommandInfo
    from .results import ExecutionInfo, Stdio

__all__ = [
    "CommandError",
    "CommandPreconditionError",
    "CommandIOError",
    "CommandHandlerError",
    "CommandTimeoutError",
    "CommandInterruptedError",
]


class CommandError(Exception):
    """Base class for every failure raised by a command execution.

    Attributes:
        summary: One-line description of what went wrong
        command_info: The configuration that was executed
        execution_info: Runtime facts, None if no process was started
    """

    def __init__(
        self,
        summary: str,
        command_info: "CommandInfo | None" = None,
        execution_info: "ExecutionInfo | None" = None,
    ) -> None:
        self.summary = summary
        self.command_info = command_info
        self.execution_info = execution_info
        super().__init__(format_failure(summary, command_info, execution_info))


class CommandPreconditionError(CommandError, ValueError):
    """The command configuration is invalid (e.g. empty command line)."""
    pass


class CommandIOError(CommandError):
    """The process could not be spawned, or stream I/O failed outside handlers.

    The underlying ``OSError`` is available as ``__cause__``.
    """
    pass


class _HandlerOutcomeMixin:
    stdin_error: BaseException | None
    stdout_error: BaseException | None
    stderr_error: BaseException | None

    def _set_handler_errors(
        self,
        stdin_error: BaseException | None,
        stdout_error: BaseException | None,
        stderr_error: BaseException | None,
    ) -> None:
        self.stdin_error = stdin_error
        self.stdout_error = stdout_error
        self.stderr_error = stderr_error

    def handler_error(self, stdio: "Stdio") -> BaseException | None:
        """The exception raised by the handler bound to ``stdio``, if any."""
        return getattr(self, f"{stdio.label}_error")

    @property
    def failed_streams(self) -> list["Stdio"]:
        from .results import Stdio

        return [stdio for stdio in Stdio if self.handler_error(stdio) is not None]


class CommandHandlerError(_HandlerOutcomeMixin, CommandError):
    """One or more stream handlers raised.

    ``root`` is the first exception captured (also ``__cause__``); later ones
    are in ``suppressed``.
    """

    def __init__(
        self,
        root: BaseException,
        command_info: "CommandInfo",
        execution_info: "ExecutionInfo",
        suppressed: tuple[BaseException, ...] = (),
        stdin_error: BaseException | None = None,
        stdout_error: BaseException | None = None,
        stderr_error: BaseException | None = None,
    ) -> None:
        self.root = root
        self.suppressed = suppressed
        self._set_handler_errors(stdin_error, stdout_error, stderr_error)
        first_line = str(root).split("\n", 1)[0].strip()
        summary = f"exception raised in stream handler: {type(root).__name__}: {first_line}"
        super().__init__(summary, command_info, execution_info)


class CommandTimeoutError(_HandlerOutcomeMixin, CommandError):
    """The process outlived its timeout and was killed.

    Handler exceptions observed while tearing down are informational.
    """

    def __init__(
        self,
        command_info: "CommandInfo",
        execution_info: "ExecutionInfo",
        stdin_error: BaseException | None = None,
        stdout_error: BaseException | None = None,
        stderr_error: BaseException | None = None,
    ) -> None:
        self._set_handler_errors(stdin_error, stdout_error, stderr_error)
        summary = f"command execution timed out after {command_info.timeout}s"
        super().__init__(summary, command_info, execution_info)


class CommandInterruptedError(CommandError):
    """The execution was cancelled from outside while it was running."""
    pass
