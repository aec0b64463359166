"""Process tree termination tests."""

from __future__ import annotations

import subprocess
import sys
import time

import psutil
import pytest

from cmdpipe.runtime.process_tree import (
    IS_WINDOWS,
    kill_descendants,
    kill_process_tree,
    list_descendants,
)

from conftest import fake_cli


def spawn_with_child(**kwargs) -> tuple[subprocess.Popen, int]:
    """Start fake_cli with a sleeping grandchild, return (process, grandchild pid)."""
    process = subprocess.Popen(
        fake_cli("--spawn-child", "60", "--sleep", "60"),
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        **kwargs,
    )
    line = process.stdout.readline().decode().strip()
    assert line.startswith("child="), line
    return process, int(line.split("=", 1)[1])


def is_gone(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.05)
    return False


def reap(process: subprocess.Popen, grandchild: int) -> None:
    try:
        psutil.Process(grandchild).kill()
    except psutil.NoSuchProcess:
        pass
    process.kill()
    process.wait(timeout=5)
    process.stdout.close()


@pytest.mark.integration
@pytest.mark.timeout(30)
class TestProcessTree:
    """Test descendant enumeration and killing."""

    def test_list_descendants(self):
        process, grandchild = spawn_with_child()
        try:
            pids = [p.pid for p in list_descendants(process.pid)]
            assert grandchild in pids
        finally:
            reap(process, grandchild)

    def test_list_descendants_missing_pid(self):
        process = subprocess.Popen([sys.executable, "-c", "pass"])
        process.wait()
        assert list_descendants(process.pid) == []

    def test_kill_descendants(self):
        process, grandchild = spawn_with_child()
        try:
            assert kill_descendants(process.pid) >= 1
            assert is_gone(grandchild)
            assert process.poll() is None
        finally:
            reap(process, grandchild)

    def test_kill_process_tree(self):
        process, grandchild = spawn_with_child()
        try:
            kill_process_tree(process)
            process.wait(timeout=5)
            assert is_gone(grandchild)
        finally:
            reap(process, grandchild)

    def test_kill_process_only(self):
        process, grandchild = spawn_with_child()
        try:
            kill_process_tree(process, include_descendants=False)
            process.wait(timeout=5)
            assert psutil.Process(grandchild).status() != psutil.STATUS_ZOMBIE
        finally:
            reap(process, grandchild)

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    def test_kill_process_group(self):
        process, grandchild = spawn_with_child(start_new_session=True)
        try:
            kill_process_tree(process, new_session=True)
            process.wait(timeout=5)
            assert is_gone(grandchild)
        finally:
            reap(process, grandchild)

    def test_already_exited(self):
        process = subprocess.Popen([sys.executable, "-c", "pass"])
        process.wait()

        kill_process_tree(process)
        assert process.returncode == 0
