"""cmdpipe - run external processes with leak-free lifecycle management.

Environment variables:
    CMDPIPE_RECORDER_LINE_WIDTH / _HEAD_LINES / _TAIL_LINES: default stderr recorder shape
    CMDPIPE_POOL_IDLE_TIMEOUT: idle lifetime of default pool threads
    CMDPIPE_KILL_TIMEOUT: wait after a forced kill
    CMDPIPE_LOG_DEBUG: CLI debug log to a temp file

Usage:
    from cmdpipe import cmdline
    result = cmdline("ls", "-l").handle_stdout(lambda s: s.read()).execute()
"""

__version__ = "0.1.0"

from .command import Command, CommandInfo, EnvVar, cmdline
from .errors import (
    CommandError,
    CommandHandlerError,
    CommandInterruptedError,
    CommandIOError,
    CommandPreconditionError,
    CommandTimeoutError,
)
from .recorder import ErrorRecorder
from .results import ExecutionInfo, ExecutionResult, Stdio

__all__ = [
    "__version__",
    "Command",
    "CommandError",
    "CommandHandlerError",
    "CommandIOError",
    "CommandInfo",
    "CommandInterruptedError",
    "CommandPreconditionError",
    "CommandTimeoutError",
    "EnvVar",
    "ErrorRecorder",
    "ExecutionInfo",
    "ExecutionResult",
    "Stdio",
    "cmdline",
]
