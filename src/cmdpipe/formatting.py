"""Human-readable rendering of commands, executions and failures.

Used to build the messages of :mod:`cmdpipe.errors`. Confidential environment
variables are redacted and control characters escaped so a diagnostic can be
logged or printed safely.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .command import CommandInfo, EnvVar
    from .results import ExecutionInfo

__all__ = [
    "escape_string",
    "format_env_var",
    "format_command_info",
    "format_execution_info",
    "format_failure",
]

_SIMPLE_ESCAPES = {
    "\b": "\\b",
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    "'": "\\'",
    '"': '\\"',
    "\\": "\\\\",
}


def escape_string(text: str, escape_unicode: bool = False) -> str:
    """Escape quotes, backslashes and control characters.

    Args:
        text: Input text
        escape_unicode: Also escape every non-ASCII character as ``\\uXXXX``

    Returns:
        The escaped text
    """
    out: list[str] = []
    for ch in text:
        code = ord(ch)
        if ch in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[ch])
        elif code < 0x20 or (escape_unicode and code > 0x7F):
            if code > 0xFFFF:
                out.append(f"\\U{code:08X}")
            else:
                out.append(f"\\u{code:04X}")
        else:
            out.append(ch)
    return "".join(out)


def format_env_var(var: "EnvVar") -> str:
    key = escape_string(var.name, escape_unicode=True)
    if var.value is None:
        return f"{key} (cleared)"
    if var.confidential:
        return f"{key} ***"
    return f'{key}="{escape_string(var.value)}"'


def _format_command_line(command_line) -> str:
    return "[" + ", ".join(escape_string(arg) for arg in command_line) + "]"


def format_command_info(info: "CommandInfo") -> str:
    lines = ["Command:"]
    lines.append(f"  command line: {_format_command_line(info.command_line)}")
    if info.working_directory is None:
        lines.append("  working directory: (inherited)")
    else:
        lines.append(f"  working directory: {info.working_directory}")
    if info.timeout:
        lines.append(f"  timeout: {info.timeout}s")
    lines.append(f"  inherit io: {info.inherit_io}")
    if info.inherited_streams and not info.inherit_io:
        streams = sorted(info.inherited_streams, key=lambda stdio: stdio.value)
        lines.append(f"  inherited streams: {', '.join(stdio.label for stdio in streams)}")
    lines.append(f"  encoding: {info.io_encoding}")
    lines.append(f"  environment variables ({len(info.env_vars)}):")
    for var in info.env_vars:
        lines.append(f"    {format_env_var(var)}")
    return "\n".join(lines)


def format_execution_info(info: "ExecutionInfo") -> str:
    lines = ["Execution:"]
    lines.append(f"  pid: {info.pid}")
    lines.append(f"  exit code: {'-' if info.exit_code is None else info.exit_code}")
    started = info.started_at.isoformat()
    if info.ended_at is not None:
        lines.append(f"  timing: {started}..{info.ended_at.isoformat()} ({info.duration})")
    else:
        lines.append(f"  timing: {started}.. (in progress)")
    lines.append(f"  killed by timeout: {info.timeout_killed}")
    return "\n".join(lines)


def format_failure(
    summary: str,
    command_info: "CommandInfo | None" = None,
    execution_info: "ExecutionInfo | None" = None,
) -> str:
    """Render a failure summary followed by everything known about the run.

    The first line is ``summary``. Then ``Cmdline: [...] at <dir> [Pid=.. Exit=..]``,
    a timing line, the environment deltas and the stderr snapshot, each only
    when available.
    """
    lines = [summary]
    if command_info is None:
        return summary

    head = f"Cmdline: {_format_command_line(command_info.command_line)}"
    if command_info.working_directory is not None:
        head += f" at {command_info.working_directory}"
    if execution_info is not None:
        status = []
        if execution_info.pid >= 0:
            status.append(f"Pid={execution_info.pid}")
        if execution_info.exit_code is not None:
            status.append(f"Exit={execution_info.exit_code}")
        if status:
            head += f" [{' '.join(status)}]"
    lines.append(head)

    if execution_info is not None:
        timing = f"Timing: {execution_info.started_at.isoformat()}.."
        if execution_info.ended_at is not None:
            timing += f"{execution_info.ended_at.isoformat()} duration {execution_info.duration}"
        lines.append(timing)
        if execution_info.timeout_killed:
            lines.append("Killed: timeout")

    if command_info.env_vars:
        lines.append("Environment variables:")
        for var in command_info.env_vars:
            lines.append(f"  {format_env_var(var)}")

    if execution_info is not None and execution_info.stderr_snapshot:
        lines.append("Stderr:")
        for line in execution_info.stderr_snapshot.splitlines():
            lines.append(f"  {line}")

    return "\n".join(lines)
