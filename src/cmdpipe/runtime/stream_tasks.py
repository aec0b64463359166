"""Concurrent stream-handler tasks with first-failure-wins cancellation.

cmdpipe runtime module v0.1.0

The helper submits one task per bound standard stream to an executor. The
first task to raise becomes the root failure: every other tracked task is
cancelled and the ``on_failure`` hook (the orchestrator kills the process
there) runs exactly once. Registration and the cancellation sweep are
serialized by one lock, so a task is either registered before the sweep and
cancelled by it, or refused.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from concurrent.futures import Executor, Future
from typing import Any, Callable

from ..results import Stdio
from .aggregator import ExceptionAggregator
from .context import ContextPropagator, default_propagator

__all__ = ["StreamTaskHelper"]

logger = logging.getLogger(__name__)


class StreamTaskHelper:
    """Tracks the stream tasks of one execution.

    Example:
        helper = StreamTaskHelper(pool, on_failure=kill_process)
        future = helper.submit(Stdio.STDOUT, read_all, process.stdout)
        helper.join_all()
        if helper.root_exception is not None:
            ...
    """

    def __init__(
        self,
        executor: Executor,
        on_failure: Callable[[], None] | None = None,
        propagator: ContextPropagator | None = None,
    ) -> None:
        self._executor = executor
        self._on_failure = on_failure
        self._propagator = propagator or default_propagator()
        self._errors = ExceptionAggregator()
        self._lock = threading.RLock()
        self._tasks: dict[Stdio, Future] = {}
        # resolved with the root failure
        self._failed: Future = Future()

    @property
    def root_exception(self) -> BaseException | None:
        return self._errors.current()

    @property
    def suppressed(self) -> tuple[BaseException, ...]:
        return self._errors.suppressed

    @property
    def tasks(self) -> dict[Stdio, Future]:
        with self._lock:
            return dict(self._tasks)

    def submit(self, slot: Stdio, fn: Callable[..., Any], *args: Any) -> Future | None:
        """Schedule ``fn(*args)`` for ``slot``.

        Returns:
            The task's future, or None if a failure was already recorded

        Raises:
            RuntimeError: The executor refused the task (recorded as a failure first)
        """
        with self._lock:
            if self._errors.current() is not None:
                logger.debug(f"Refusing {slot.label} task, helper already failed")
                return None
            snapshot = self._propagator.capture()
            try:
                future = self._executor.submit(self._run, slot, snapshot, fn, *args)
            except BaseException as exc:
                self.fail(exc)
                raise
            self._tasks[slot] = future
            return future

    def _run(self, slot: Stdio, snapshot: Any, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return self._propagator.run(snapshot, fn, *args)
        except BaseException as exc:
            logger.debug(f"Handler {slot.label} raised {type(exc).__name__}: {exc}")
            self.fail(exc)
            raise

    def fail(self, exc: BaseException) -> bool:
        """Report a failure.

        Only the first reported failure cancels the other tasks and invokes
        ``on_failure``; later ones are kept as suppressed.

        Returns:
            True if ``exc`` became the root failure
        """
        if not self._errors.add(exc):
            return False
        self._failed.set_result(exc)
        self._cancel_all()
        if self._on_failure is not None:
            try:
                self._on_failure()
            except Exception as e:
                logger.warning(f"Error in on_failure callback: {e}")
        return True

    def _cancel_all(self) -> None:
        with self._lock:
            cancelled = 0
            for future in self._tasks.values():
                if future.cancel():
                    cancelled += 1
            if cancelled:
                logger.debug(f"Cancelled {cancelled} pending stream task(s)")

    def join_all(self, timeout: float | None = None, failure_grace: float | None = None) -> bool:
        """Wait for every tracked task; per-task failures are not raised.

        Args:
            timeout: Upper bound for the whole wait (None = unbounded)
            failure_grace: Once a failure is recorded, wait at most this many
                more seconds. A task blocked on a pipe that a surviving
                descendant still holds is then left running.

        Returns:
            True if every task is done
        """
        pending = set(self.tasks.values())
        if not pending:
            return True
        if failure_grace is None:
            _, pending = concurrent.futures.wait(pending, timeout=timeout)
            return not pending

        deadline = None if timeout is None else time.monotonic() + timeout
        while pending:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                break
            if self._failed.done():
                grace = failure_grace if remaining is None else min(failure_grace, remaining)
                _, pending = concurrent.futures.wait(pending, timeout=grace)
                break
            _, pending = concurrent.futures.wait(
                pending | {self._failed},
                timeout=remaining,
                return_when=concurrent.futures.FIRST_COMPLETED,
            )
            pending.discard(self._failed)
        if pending:
            logger.debug(f"{len(pending)} stream task(s) still running")
        return not pending

    @staticmethod
    def outcome(future: Future | None) -> tuple[Any, BaseException | None]:
        """(value, exception) of a finished task; a cancelled task gives (None, None)."""
        if future is None or future.cancelled() or not future.done():
            return None, None
        exc = future.exception()
        if exc is not None:
            return None, exc
        return future.result(), None
