"""Immutable command configuration and its fluent builder.

Every ``with_*`` / ``handle_*`` call returns a new :class:`Command`; a command
can be shared, branched and executed any number of times.

Example:
    result = (
        cmdline("git", "status", "--short")
        .with_working_directory(repo)
        .with_env("GIT_PAGER", "cat")
        .with_timeout(10)
        .handle_stdout(lambda s: s.read().decode())
        .execute()
    )
    print(result.exit_code, result.stdout_value)
"""

from __future__ import annotations

import locale
import os
from concurrent.futures import Executor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Callable, Iterable, Mapping, Sequence

import anyio

from .formatting import format_command_info, format_env_var
from .results import ExecutionResult, Stdio

if TYPE_CHECKING:
    from .runtime.process_runner import ProcessRunner

__all__ = [
    "EnvVar",
    "CommandInfo",
    "Command",
    "InputHandler",
    "OutputHandler",
    "apply_env_vars",
    "cmdline",
]

# stdout/stderr handler: reads the child's output, returns a decoded value
InputHandler = Callable[[BinaryIO], Any]
# stdin handler: writes the child's input
OutputHandler = Callable[[BinaryIO], None]


def _default_encoding() -> str:
    return locale.getpreferredencoding(False) or "utf-8"


@dataclass(frozen=True)
class EnvVar:
    """One environment delta.

    Attributes:
        name: Variable name
        value: New value, or None to remove the variable
        confidential: Redact the value in diagnostics
    """

    name: str
    value: str | None
    confidential: bool = False

    def __post_init__(self) -> None:
        if not self.name or "=" in self.name or "\0" in self.name:
            raise ValueError(f"invalid environment variable name: {self.name!r}")

    def __str__(self) -> str:
        return format_env_var(self)

    def __repr__(self) -> str:
        return f"EnvVar({format_env_var(self)})"


def apply_env_vars(base: Mapping[str, str], env_vars: Iterable[EnvVar]) -> dict[str, str]:
    """Apply deltas in order onto a copy of ``base``; later entries win."""
    env = dict(base)
    for var in env_vars:
        if var.value is None:
            env.pop(var.name, None)
        else:
            env[var.name] = var.value
    return env


@dataclass(frozen=True)
class CommandInfo:
    """Description of one invocation.

    Attributes:
        command_line: Program and arguments
        working_directory: Directory to run in (None = inherit)
        env_vars: Environment deltas applied onto ``os.environ``, in order
        timeout: Seconds before the process tree is killed (0 = unbounded)
        inherit_io: Connect the child to our own stdin/stdout/stderr
        inherited_streams: Individual streams connected to our own
        kill_descendants: Also kill descendant processes when killing
        default_error_recorder: Record stderr when no stderr handler is set
        io_encoding: Encoding used to decode stderr for the recorder
        new_session: Start the child in its own session / process group
        auto_grant_executable: On a permission error, add the executable bits
            to the program file and spawn once more (POSIX)
    """

    command_line: tuple[str, ...] = ()
    working_directory: Path | None = None
    env_vars: tuple[EnvVar, ...] = ()
    timeout: float = 0
    inherit_io: bool = False
    kill_descendants: bool = True
    default_error_recorder: bool = True
    io_encoding: str = field(default_factory=_default_encoding)
    new_session: bool = False
    inherited_streams: frozenset[Stdio] = frozenset()
    auto_grant_executable: bool = False

    def is_inherited(self, stdio: Stdio) -> bool:
        """Whether ``stdio`` is connected to our own stream instead of a pipe."""
        return self.inherit_io or stdio in self.inherited_streams

    def environment(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """The environment the child will see."""
        return apply_env_vars(os.environ if base is None else base, self.env_vars)

    def __str__(self) -> str:
        return format_command_info(self)


@dataclass(frozen=True)
class Command:
    """Fluent, immutable command builder.

    Create one with :func:`cmdline`. ``executor`` overrides the process-wide
    daemon thread pool used to run stream handlers.
    """

    info: CommandInfo = field(default_factory=CommandInfo)
    executor: Executor | None = None
    stdin_handler: OutputHandler | None = None
    stdout_handler: InputHandler | None = None
    stderr_handler: InputHandler | None = None

    def _with_info(self, **changes: Any) -> "Command":
        return replace(self, info=replace(self.info, **changes))

    def with_command_line(self, *argv: str | os.PathLike) -> "Command":
        if len(argv) == 1 and isinstance(argv[0], (list, tuple)):
            argv = tuple(argv[0])
        return self._with_info(command_line=tuple(os.fspath(arg) for arg in argv))

    def with_env(self, name: str, value: str | None, confidential: bool = False) -> "Command":
        var = EnvVar(name, value, confidential)
        return self._with_info(env_vars=self.info.env_vars + (var,))

    def with_envs(self, *variables: tuple[str, str | None] | EnvVar) -> "Command":
        added = tuple(v if isinstance(v, EnvVar) else EnvVar(v[0], v[1]) for v in variables)
        return self._with_info(env_vars=self.info.env_vars + added)

    def with_working_directory(self, directory: str | os.PathLike) -> "Command":
        return self._with_info(working_directory=Path(directory))

    def with_timeout(self, seconds: float) -> "Command":
        if seconds < 0:
            raise ValueError("timeout must not be negative")
        return self._with_info(timeout=seconds)

    def with_inherit_io(self, enabled: bool = True, stdio: Stdio | None = None) -> "Command":
        """Connect the child to our own streams.

        Without ``stdio`` this switches all three streams; with it, only that
        one, and binding a handler to the stream later switches it back.
        """
        if stdio is None:
            return self._with_info(inherit_io=enabled)
        return self._with_info(inherited_streams=self._inherited(stdio, enabled))

    def _inherited(self, stdio: Stdio, enabled: bool) -> frozenset[Stdio]:
        streams = self.info.inherited_streams
        return streams | {stdio} if enabled else streams - {stdio}

    def with_kill_descendants(self, enabled: bool = True) -> "Command":
        return self._with_info(kill_descendants=enabled)

    def with_default_error_recorder(self, enabled: bool = True) -> "Command":
        return self._with_info(default_error_recorder=enabled)

    def with_encoding(self, encoding: str) -> "Command":
        return self._with_info(io_encoding=encoding)

    def with_new_session(self, enabled: bool = True) -> "Command":
        return self._with_info(new_session=enabled)

    def with_auto_grant_executable(self, enabled: bool = True) -> "Command":
        return self._with_info(auto_grant_executable=enabled)

    def with_executor(self, executor: Executor | None) -> "Command":
        return replace(self, executor=executor)

    def handle_stdin(self, handler: OutputHandler | None) -> "Command":
        return self._with_handler(Stdio.STDIN, "stdin_handler", handler)

    def handle_stdout(self, handler: InputHandler | None) -> "Command":
        return self._with_handler(Stdio.STDOUT, "stdout_handler", handler)

    def handle_stderr(self, handler: InputHandler | None) -> "Command":
        return self._with_handler(Stdio.STDERR, "stderr_handler", handler)

    def _with_handler(self, stdio: Stdio, name: str, handler: Callable | None) -> "Command":
        command = replace(self, **{name: handler})
        if handler is None:
            return command
        # a bound handler takes the stream back from inheritance
        return command._with_info(inherited_streams=self._inherited(stdio, False))

    def runner(self) -> "ProcessRunner":
        """A fresh single-use :class:`~cmdpipe.runtime.ProcessRunner` for this command."""
        from .runtime.process_runner import ProcessRunner

        return ProcessRunner(
            self.info,
            executor=self.executor,
            stdin_handler=self.stdin_handler,
            stdout_handler=self.stdout_handler,
            stderr_handler=self.stderr_handler,
        )

    def execute(self) -> ExecutionResult:
        """Run the command to completion on the calling thread.

        Raises:
            CommandPreconditionError: Empty command line
            CommandIOError: The process could not be started
            CommandHandlerError: A stream handler raised
            CommandTimeoutError: The timeout elapsed and the process was killed
        """
        return self.runner().run()

    async def execute_async(self) -> ExecutionResult:
        """Run the command in a worker thread without blocking the event loop.

        If the awaiting task is cancelled, the process tree is killed before
        the cancellation propagates.
        """
        runner = self.runner()
        try:
            return await anyio.to_thread.run_sync(runner.run, abandon_on_cancel=True)
        except anyio.get_cancelled_exc_class():
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(runner.cancel)
            raise

    def __str__(self) -> str:
        return format_command_info(self.info)


def cmdline(*argv: str | os.PathLike | Sequence[str]) -> Command:
    """Start building a command.

    Accepts either separate arguments or a single list/tuple.
    """
    return Command().with_command_line(*argv)
