"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试用子进程脚本
FAKE_CLI_PATH = PROJECT_ROOT / "tests" / "fixtures" / "fake_cli.py"


def fake_cli(*args: str) -> list[str]:
    """构建运行 fake_cli.py 的命令行。"""
    return [sys.executable, str(FAKE_CLI_PATH), *args]


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """临时工作目录。"""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def pool():
    """测试专用线程池（测试结束后关闭）。"""
    from cmdpipe.runtime.worker_pool import DaemonThreadPool

    executor = DaemonThreadPool(idle_timeout=1.0, thread_name_prefix="cmdpipe-test")
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    """每个测试使用干净的 CMDPIPE_* 环境和重新加载的配置。"""
    import os

    from cmdpipe import config

    for key in list(os.environ):
        if key.startswith("CMDPIPE_"):
            monkeypatch.delenv(key)
    config.reload_config()
    yield
    config.reload_config()
