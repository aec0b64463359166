"""Diagnostic context propagation from the orchestrating thread to workers.

Stream handlers run on pool threads. To keep logging context (and any other
``contextvars`` state) of the caller visible inside handlers, the stream task
helper captures a snapshot at submit time and runs the task inside it.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

__all__ = [
    "ContextPropagator",
    "NoOpContextPropagator",
    "ContextVarsPropagator",
    "ExecutionContextFilter",
    "current_execution",
    "execution_context",
    "default_propagator",
]

T = TypeVar("T")

# Label of the command currently being executed, e.g. "pid=123 ls".
current_execution: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "cmdpipe_current_execution", default=None
)


class ContextPropagator:
    """Capture/restore pair threaded through each submitted task."""

    def capture(self) -> Any:
        raise NotImplementedError

    def run(self, snapshot: Any, fn: Callable[..., T], *args: Any) -> T:
        raise NotImplementedError


class NoOpContextPropagator(ContextPropagator):
    def capture(self) -> Any:
        return None

    def run(self, snapshot: Any, fn: Callable[..., T], *args: Any) -> T:
        return fn(*args)


class ContextVarsPropagator(ContextPropagator):
    """Runs each task in a copy of the submitter's ``contextvars`` context.

    A fresh copy is taken per task; a ``Context`` can only be entered by one
    thread at a time.
    """

    def capture(self) -> Any:
        return contextvars.copy_context()

    def run(self, snapshot: Any, fn: Callable[..., T], *args: Any) -> T:
        if snapshot is None:
            return fn(*args)
        return snapshot.run(fn, *args)


_default = ContextVarsPropagator()


def default_propagator() -> ContextPropagator:
    return _default


@contextmanager
def execution_context(label: str) -> Iterator[None]:
    """Set :data:`current_execution` for the duration of the block."""
    token = current_execution.set(label)
    try:
        yield
    finally:
        try:
            current_execution.reset(token)
        except ValueError:
            # token created in a different context
            pass


class ExecutionContextFilter(logging.Filter):
    """Adds ``record.execution`` (current execution label or "-")."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.execution = current_execution.get() or "-"
        return True
