"""默认工作线程池。

为 stream handler 提供一个无上限、带空闲超时的守护线程池：
- 没有空闲线程时为每个任务新建线程（不会因为池满而阻塞）
- 空闲超过 idle_timeout 的线程自动退出
- 所有线程都是 daemon，不会阻止解释器退出

全局默认池在第一次使用时创建，可以通过 Command.with_executor() 覆盖。
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from concurrent.futures import Executor, Future
from typing import Any, Callable

from ..config import get_config

__all__ = ["DaemonThreadPool", "get_default_pool"]

logger = logging.getLogger(__name__)

_WorkItem = tuple[Future, Callable[..., Any], tuple, dict]


class DaemonThreadPool(Executor):
    """无上限的守护线程池（concurrent.futures.Executor 实现）。

    线程安全：submit 和 shutdown 可以从任意线程并发调用。

    Example:
        ```python
        pool = DaemonThreadPool(idle_timeout=5.0)
        future = pool.submit(sum, [1, 2, 3])
        assert future.result() == 6
        pool.shutdown()
        ```

    Attributes:
        idle_timeout: 空闲线程存活时间（秒）
        thread_name_prefix: 线程名前缀
    """

    def __init__(
        self,
        idle_timeout: float | None = None,
        thread_name_prefix: str = "cmdpipe-worker",
    ) -> None:
        """初始化线程池。

        Args:
            idle_timeout: 空闲线程存活时间（默认从配置读取）
            thread_name_prefix: 线程名前缀
        """
        self.idle_timeout = (
            idle_timeout if idle_timeout is not None else get_config().pool_idle_timeout
        )
        self.thread_name_prefix = thread_name_prefix

        self._queue: queue.Queue[_WorkItem | None] = queue.Queue()
        self._lock = threading.Lock()
        self._threads: set[threading.Thread] = set()
        self._idle = 0
        self._shutdown = False
        self._counter = itertools.count(1)

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        """提交任务。

        Raises:
            RuntimeError: 线程池已关闭
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")

            future: Future = Future()
            self._queue.put((future, fn, args, kwargs))

            # 有空闲线程则复用，否则新建
            if self._idle > 0:
                self._idle -= 1
            else:
                self._spawn_worker()
            return future

    def _spawn_worker(self) -> None:
        name = f"{self.thread_name_prefix}-{next(self._counter)}"
        thread = threading.Thread(target=self._worker, name=name, daemon=True)
        self._threads.add(thread)
        thread.start()
        logger.debug(f"Spawned pool thread {name} (total={len(self._threads)})")

    def _worker(self) -> None:
        current = threading.current_thread()
        while True:
            try:
                item = self._queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                with self._lock:
                    # submit 可能刚刚预约了本线程
                    if not self._queue.empty():
                        continue
                    self._idle -= 1
                    self._threads.discard(current)
                logger.debug(f"Pool thread {current.name} retired after idle timeout")
                return

            if item is None:
                with self._lock:
                    self._threads.discard(current)
                return

            future, fn, args, kwargs = item
            if future.set_running_or_notify_cancel():
                try:
                    result = fn(*args, **kwargs)
                except BaseException as exc:
                    future.set_exception(exc)
                else:
                    future.set_result(result)
            # 释放引用
            del item, future, fn, args, kwargs

            with self._lock:
                self._idle += 1

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        """关闭线程池。

        Args:
            wait: 是否等待所有线程退出
            cancel_futures: 是否取消尚未开始的任务
        """
        with self._lock:
            if self._shutdown:
                threads = list(self._threads)
            else:
                self._shutdown = True
                if cancel_futures:
                    while True:
                        try:
                            item = self._queue.get_nowait()
                        except queue.Empty:
                            break
                        if item is not None:
                            item[0].cancel()
                threads = list(self._threads)
                for _ in threads:
                    self._queue.put(None)

        if wait:
            for thread in threads:
                if thread is not threading.current_thread():
                    thread.join()

    @property
    def thread_count(self) -> int:
        """当前存活的线程数量。"""
        with self._lock:
            return len(self._threads)

    def __repr__(self) -> str:
        return (
            f"DaemonThreadPool(threads={self.thread_count}, "
            f"idle_timeout={self.idle_timeout}s, shutdown={self._shutdown})"
        )


# 全局默认线程池（延迟创建）
_default_pool: DaemonThreadPool | None = None
_default_pool_lock = threading.Lock()


def get_default_pool() -> DaemonThreadPool:
    """获取全局默认线程池。"""
    global _default_pool
    if _default_pool is None:
        with _default_pool_lock:
            if _default_pool is None:
                _default_pool = DaemonThreadPool()
                logger.debug(f"Builtin thread pool created: {_default_pool}")
    return _default_pool
