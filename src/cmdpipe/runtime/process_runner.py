"""Process runner with concurrent stream handling and reliable termination.

cmdpipe runtime module v0.1.0

This module provides:
- Spawning one child process with a working directory and environment overlay
- Concurrent stdin/stdout/stderr handlers on a worker pool
- Timeout enforcement by killing the process tree
- Reconciliation of exit code, handler failures, timeout and cancellation
  into exactly one result or one CommandError

Key design points:
- A stream without a handler never gets a pipe (DEVNULL), except stderr,
  which goes to a bounded ErrorRecorder unless that is disabled
- The first failing handler kills the process; the orchestrator alone
  decides what is raised
- Every non-success exit kills the process tree and closes every stream not
  owned by a still-running handler, and the original exception propagates
- Once a kill is decided, handlers get ``kill_timeout`` to finish; one still
  blocked on a pipe held by a surviving descendant is abandoned on its
  daemon worker
"""

from __future__ import annotations

import logging
import os
import stat
import subprocess
import threading
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Any, BinaryIO, Callable

from ..command import CommandInfo, InputHandler, OutputHandler
from ..config import get_config
from ..errors import (
    CommandHandlerError,
    CommandInterruptedError,
    CommandIOError,
    CommandPreconditionError,
    CommandTimeoutError,
)
from ..recorder import ErrorRecorder
from ..results import ExecutionInfo, ExecutionResult, Stdio, utcnow
from .context import ContextPropagator, execution_context
from .process_tree import IS_WINDOWS, kill_process_tree
from .stream_tasks import StreamTaskHelper
from .worker_pool import get_default_pool

__all__ = ["ProcessRunner"]

logger = logging.getLogger(__name__)


class _RunnerSignal(Exception):
    """Failure reported to the stream task helper by the runner itself."""


class _TimeoutSignal(_RunnerSignal):
    pass


class _InterruptSignal(_RunnerSignal):
    pass


def _grant_executable(path: Path) -> bool:
    """Add the execute bits to a regular file that lacks them.

    Returns:
        True if the mode was changed and a spawn is worth retrying
    """
    if IS_WINDOWS or not path.is_file() or os.access(path, os.X_OK):
        return False
    try:
        mode = path.stat().st_mode
        os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as e:
        logger.debug(f"Failed to grant executable permission to {path}: {e}")
        return False
    return True


class _StreamSlot:
    """One bound standard stream: owns the stream and closes it when done."""

    def __init__(self, stdio: Stdio, stream: BinaryIO, handler: Callable[[BinaryIO], Any]) -> None:
        self.stdio = stdio
        self.stream = stream
        self.handler = handler

    def run(self) -> Any:
        name = self.stdio.label
        logger.debug(f"Handler {name} begin")
        try:
            value = self.handler(self.stream)
        except BaseException:
            self.close()
            logger.debug(f"Handler {name} end (raised)")
            raise
        self.close(strict=True)
        logger.debug(f"Handler {name} end")
        return value

    def close(self, strict: bool = False) -> None:
        try:
            self.stream.close()
        except BrokenPipeError:
            # child stopped reading stdin
            pass
        except (OSError, ValueError) as e:
            if strict:
                raise
            logger.debug(f"Failed to close {self.stdio.label}: {e}")


class ProcessRunner:
    """Executes one :class:`CommandInfo` end to end.

    A runner is single-use. :meth:`run` blocks the calling thread;
    :meth:`cancel` may be called from any other thread to abort it.

    Example:
        runner = ProcessRunner(
            CommandInfo(command_line=("ls", "-l")),
            stdout_handler=lambda s: s.read().decode(),
        )
        result = runner.run()
        print(result.stdout_value)
    """

    def __init__(
        self,
        info: CommandInfo,
        *,
        executor: Executor | None = None,
        stdin_handler: OutputHandler | None = None,
        stdout_handler: InputHandler | None = None,
        stderr_handler: InputHandler | None = None,
        propagator: ContextPropagator | None = None,
        kill_timeout: float | None = None,
    ) -> None:
        self.info = info
        self.executor = executor
        self.stdin_handler = stdin_handler
        self.stdout_handler = stdout_handler
        self.stderr_handler = stderr_handler
        self.propagator = propagator
        self.kill_timeout = kill_timeout if kill_timeout is not None else get_config().kill_timeout

        self._lock = threading.Lock()
        self._used = False
        self._cancelled = False
        self._process: subprocess.Popen | None = None
        self._helper: StreamTaskHelper | None = None

    @property
    def process(self) -> subprocess.Popen | None:
        """The child process, once spawned."""
        return self._process

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def run(self) -> ExecutionResult:
        """Execute the command.

        Returns:
            The execution result

        Raises:
            CommandPreconditionError: Empty command line (no process created)
            CommandIOError: Spawn failure, or the executor refused a handler task
            CommandHandlerError: A stream handler raised
            CommandTimeoutError: The timeout elapsed and the process tree was killed
            CommandInterruptedError: :meth:`cancel` was called
        """
        info = self.info
        if not info.command_line:
            raise CommandPreconditionError("command line is empty", info)
        with self._lock:
            if self._used:
                raise RuntimeError("ProcessRunner is single-use")
            self._used = True
            if self._cancelled:
                raise CommandInterruptedError("execution cancelled before start", info)

        logger.debug(f"Executing command: {list(info.command_line)} at {info.working_directory}")
        kwargs = self._build_popen_kwargs()
        try:
            process = self._spawn(kwargs)
        except OSError as e:
            raise CommandIOError(f"failed to start process: {e}", info) from e

        with self._lock:
            self._process = process
        pid = process.pid if process.pid is not None else -1
        logger.debug(f"Started subprocess pid={pid} argv={info.command_line[0]}")

        with execution_context(f"pid={pid} {info.command_line[0]}"):
            return self._handle(process, ExecutionInfo(pid=pid, started_at=utcnow()))

    def cancel(self) -> bool:
        """Abort a running (or not yet started) execution from another thread.

        Kills the process tree and waits up to ``kill_timeout`` for the
        process to exit. :meth:`run` then raises CommandInterruptedError.

        Returns:
            False if the runner was already cancelled
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            process = self._process
            helper = self._helper

        logger.debug(f"Cancelling execution of {list(self.info.command_line)}")
        if helper is not None:
            helper.fail(_InterruptSignal("execution cancelled"))
        if process is not None:
            self._kill(process)
            try:
                process.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Subprocess did not exit after kill pid={process.pid}")
        return True

    def _spawn(self, kwargs: dict[str, Any]) -> subprocess.Popen:
        argv = list(self.info.command_line)
        try:
            return subprocess.Popen(argv, **kwargs)
        except PermissionError:
            if not (self.info.auto_grant_executable and _grant_executable(self._program_path())):
                raise
        logger.debug(f"Granted executable permission to {argv[0]}, retrying")
        return subprocess.Popen(argv, **kwargs)

    def _program_path(self) -> Path:
        program = Path(self.info.command_line[0])
        if not program.is_absolute() and self.info.working_directory is not None:
            # POSIX resolves a relative program path against cwd
            candidate = self.info.working_directory / program
            if candidate.is_file():
                return candidate
        return program

    def _build_popen_kwargs(self) -> dict[str, Any]:
        """Build stream wiring, environment and platform-specific kwargs.

        Returns:
            Dict of kwargs for subprocess.Popen
        """
        info = self.info
        kwargs: dict[str, Any] = {}

        if info.working_directory is not None:
            kwargs["cwd"] = info.working_directory

        # Environment overlay is resolved now, before spawn
        if info.env_vars:
            kwargs["env"] = info.environment()

        if info.inherit_io:
            logger.debug("inherit_io set, no handler and recorder will be used")

        # None: inherited from us; DEVNULL stdin: the child sees EOF immediately
        kwargs["stdin"] = self._redirect(Stdio.STDIN, self.stdin_handler is not None)
        kwargs["stdout"] = self._redirect(Stdio.STDOUT, self.stdout_handler is not None)
        kwargs["stderr"] = self._redirect(
            Stdio.STDERR, self.stderr_handler is not None or info.default_error_recorder
        )
        if kwargs["stderr"] == subprocess.DEVNULL:
            logger.debug("No stderr handler and default error recorder disabled, discarding stderr")

        if info.new_session:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True

        return kwargs

    def _redirect(self, stdio: Stdio, bound: bool) -> int | None:
        if self.info.is_inherited(stdio):
            return None
        return subprocess.PIPE if bound else subprocess.DEVNULL

    def _open_slots(self, process: subprocess.Popen) -> dict[Stdio, _StreamSlot]:
        slots: dict[Stdio, _StreamSlot] = {}
        if self.stdin_handler is not None and process.stdin is not None:
            slots[Stdio.STDIN] = _StreamSlot(Stdio.STDIN, process.stdin, self.stdin_handler)
        if self.stdout_handler is not None and process.stdout is not None:
            slots[Stdio.STDOUT] = _StreamSlot(Stdio.STDOUT, process.stdout, self.stdout_handler)
        if process.stderr is not None:
            if self.stderr_handler is not None:
                slots[Stdio.STDERR] = _StreamSlot(Stdio.STDERR, process.stderr, self.stderr_handler)
            else:
                slots[Stdio.STDERR] = _StreamSlot(Stdio.STDERR, process.stderr, self._record_stderr)
        return slots

    def _record_stderr(self, stream: BinaryIO) -> str:
        return ErrorRecorder().record_stream(stream, self.info.io_encoding)

    @property
    def _recorder_bound(self) -> bool:
        return (
            not self.info.is_inherited(Stdio.STDERR)
            and self.stderr_handler is None
            and self.info.default_error_recorder
        )

    def _handle(self, process: subprocess.Popen, exec_info: ExecutionInfo) -> ExecutionResult:
        info = self.info
        slots = self._open_slots(process)
        helper = StreamTaskHelper(
            self.executor or get_default_pool(),
            on_failure=lambda: self._on_task_failure(process),
            propagator=self.propagator,
        )
        with self._lock:
            self._helper = helper
            cancelled = self._cancelled
        if cancelled:
            helper.fail(_InterruptSignal("execution cancelled"))

        success = False
        timed_out = False
        joined = False
        try:
            futures: dict[Stdio, Future | None] = {}
            for stdio, slot in slots.items():
                try:
                    futures[stdio] = helper.submit(stdio, slot.run)
                except RuntimeError as e:
                    raise CommandIOError(
                        "executor rejected handler task", info, exec_info
                    ) from e

            if info.timeout > 0:
                logger.debug(f"Waiting for pid={exec_info.pid} with timeout {info.timeout}s")
                try:
                    process.wait(timeout=info.timeout)
                except subprocess.TimeoutExpired:
                    logger.debug(f"Process timeout pid={exec_info.pid}, killing")
                    exec_info = exec_info.mark_timeout_killed()
                    timed_out = helper.fail(_TimeoutSignal("process execution timeout"))
                    self._kill(process)

            exit_code = process.wait()
            exec_info = exec_info.finished(exit_code)
            logger.debug(f"Subprocess terminated pid={exec_info.pid} returncode={exit_code}")

            # after a kill, a descendant still holding a pipe must not block us
            joined = True
            if helper.join_all(failure_grace=self.kill_timeout):
                logger.debug("All handlers terminated")
            else:
                logger.warning(
                    f"Abandoning {sum(not f.done() for f in helper.tasks.values())} handler(s) "
                    f"still running {self.kill_timeout}s after kill pid={exec_info.pid}"
                )

            values: dict[Stdio, Any] = {}
            errors: dict[Stdio, BaseException | None] = {}
            for stdio in Stdio:
                values[stdio], errors[stdio] = helper.outcome(futures.get(stdio))

            if self._recorder_bound:
                exec_info = exec_info.with_stderr_snapshot(values[Stdio.STDERR] or "")

            root = helper.root_exception
            if self._cancelled or isinstance(root, _InterruptSignal):
                raise CommandInterruptedError("execution cancelled", info, exec_info)
            if timed_out:
                raise CommandTimeoutError(
                    info,
                    exec_info,
                    stdin_error=errors[Stdio.STDIN],
                    stdout_error=errors[Stdio.STDOUT],
                    stderr_error=errors[Stdio.STDERR],
                )
            if root is not None:
                logger.debug(f"Exception caught in handlers: {root!r}")
                suppressed = tuple(
                    exc for exc in helper.suppressed if not isinstance(exc, _RunnerSignal)
                )
                raise CommandHandlerError(
                    root,
                    info,
                    exec_info,
                    suppressed=suppressed,
                    stdin_error=errors[Stdio.STDIN],
                    stdout_error=errors[Stdio.STDOUT],
                    stderr_error=errors[Stdio.STDERR],
                ) from root

            result = ExecutionResult(
                command_line=info.command_line,
                exit_code=exit_code,
                stdout_value=values[Stdio.STDOUT],
                stderr_value=values[Stdio.STDERR],
                command_info=info,
                execution_info=exec_info,
            )
            success = True
            return result
        finally:
            if not success:
                self._cleanup(process, slots, helper, join=not joined)

    def _on_task_failure(self, process: subprocess.Popen) -> None:
        logger.debug("Handler failure, killing process")
        self._kill(process)

    def _kill(self, process: subprocess.Popen) -> None:
        kill_process_tree(
            process,
            include_descendants=self.info.kill_descendants,
            new_session=self.info.new_session,
        )

    def _cleanup(
        self,
        process: subprocess.Popen,
        slots: dict[Stdio, _StreamSlot],
        helper: StreamTaskHelper,
        join: bool = True,
    ) -> None:
        """Kill the tree and close every stream not owned by a running handler.

        A handler still running after ``kill_timeout`` is left on its worker
        thread with its stream open. Never raises; the exception that caused
        the cleanup must propagate.
        """
        logger.debug(f"Cleaning up pid={process.pid}")
        try:
            self._kill(process)
            if join and not helper.join_all(timeout=self.kill_timeout):
                logger.debug("Some handlers are still running after kill")
            tasks = helper.tasks
            for stdio, slot in slots.items():
                future = tasks.get(stdio)
                if future is None or future.done():
                    slot.close()
            try:
                process.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Subprocess did not exit after kill pid={process.pid}")
        except Exception as e:
            logger.debug(f"Cleanup failed: {e}")
