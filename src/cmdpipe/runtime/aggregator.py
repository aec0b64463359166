"""First-failure-wins exception box shared by concurrent stream tasks."""

from __future__ import annotations

import threading

__all__ = ["ExceptionAggregator"]


class ExceptionAggregator:
    """Single-assignment holder for the first exception of a group of tasks.

    The first :meth:`add` becomes the root and never changes; every later
    exception is appended to :attr:`suppressed`. Reading :meth:`current` does
    not take the lock, so tasks that never fail never contend.

    Example:
        errors = ExceptionAggregator()
        errors.add(ValueError("first"))   # True, root
        errors.add(OSError("second"))     # False, suppressed
        errors.current()                  # ValueError("first")
    """

    def __init__(self) -> None:
        self._root: BaseException | None = None
        self._suppressed: list[BaseException] = []
        self._lock = threading.Lock()

    def add(self, exc: BaseException) -> bool:
        """Record ``exc``.

        Returns:
            True if ``exc`` became the root failure
        """
        with self._lock:
            if self._root is None:
                self._root = exc
                return True
            if exc is not self._root:
                self._suppressed.append(exc)
            return False

    def current(self) -> BaseException | None:
        return self._root

    @property
    def suppressed(self) -> tuple[BaseException, ...]:
        with self._lock:
            return tuple(self._suppressed)

    def __bool__(self) -> bool:
        return self._root is not None

    def __repr__(self) -> str:
        return f"ExceptionAggregator(root={self._root!r}, suppressed={len(self._suppressed)})"
