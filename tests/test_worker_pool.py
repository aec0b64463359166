"""DaemonThreadPool 测试。"""

from __future__ import annotations

import threading
import time

import pytest

from cmdpipe.runtime.worker_pool import DaemonThreadPool, get_default_pool


class TestSubmit:
    """测试任务提交。"""

    def test_result(self, pool):
        """任务返回值通过 Future 获取。"""
        assert pool.submit(sum, [1, 2, 3]).result(timeout=5) == 6

    def test_kwargs(self, pool):
        future = pool.submit(lambda a, b=0: a + b, 1, b=2)
        assert future.result(timeout=5) == 3

    def test_exception(self, pool):
        """任务异常保存在 Future 中。"""

        def failing():
            raise ValueError("boom")

        future = pool.submit(failing)
        assert isinstance(future.exception(timeout=5), ValueError)

    def test_daemon_threads(self, pool):
        """工作线程是 daemon 线程，名称带前缀。"""
        future = pool.submit(threading.current_thread)
        thread = future.result(timeout=5)
        assert thread.daemon
        assert thread.name.startswith("cmdpipe-test-")

    def test_unbounded(self, pool):
        """阻塞任务不会阻止新任务运行。"""
        release = threading.Event()
        blockers = [pool.submit(release.wait, 10) for _ in range(20)]
        try:
            assert pool.submit(lambda: "free").result(timeout=5) == "free"
            assert pool.thread_count >= 21
        finally:
            release.set()
        for future in blockers:
            assert future.result(timeout=5) is True

    def test_thread_reused(self, pool):
        """空闲线程被复用。"""
        first = pool.submit(threading.get_ident).result(timeout=5)
        time.sleep(0.05)
        second = pool.submit(threading.get_ident).result(timeout=5)
        assert first == second
        assert pool.thread_count == 1


class TestIdleTimeout:
    """测试空闲线程回收。"""

    def test_idle_thread_retired(self):
        pool = DaemonThreadPool(idle_timeout=0.1)
        try:
            pool.submit(lambda: None).result(timeout=5)
            deadline = time.monotonic() + 5
            while pool.thread_count and time.monotonic() < deadline:
                time.sleep(0.05)
            assert pool.thread_count == 0

            # 回收后仍可提交新任务
            assert pool.submit(lambda: 7).result(timeout=5) == 7
        finally:
            pool.shutdown()


class TestShutdown:
    """测试关闭。"""

    def test_submit_after_shutdown(self):
        pool = DaemonThreadPool()
        pool.shutdown()
        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)

    def test_shutdown_waits(self):
        pool = DaemonThreadPool()
        pool.submit(time.sleep, 0.2)
        pool.shutdown(wait=True)
        assert pool.thread_count == 0

    def test_shutdown_twice(self):
        pool = DaemonThreadPool()
        pool.shutdown()
        pool.shutdown()

    def test_repr(self):
        pool = DaemonThreadPool(idle_timeout=2.0)
        try:
            assert "idle_timeout=2.0s" in repr(pool)
        finally:
            pool.shutdown()


class TestDefaultPool:
    """测试全局默认线程池。"""

    def test_singleton(self):
        assert get_default_pool() is get_default_pool()

    def test_default_idle_timeout_from_config(self, monkeypatch):
        from cmdpipe.config import reload_config

        monkeypatch.setenv("CMDPIPE_POOL_IDLE_TIMEOUT", "5")
        reload_config()
        pool = DaemonThreadPool()
        try:
            assert pool.idle_timeout == 5.0
        finally:
            pool.shutdown()
