"""cmdpipe 环境变量配置管理。

环境变量:
    CMDPIPE_RECORDER_LINE_WIDTH: 默认错误记录器的单行最大宽度
        - 默认 80，限制在 10-4096 范围

    CMDPIPE_RECORDER_HEAD_LINES: 默认错误记录器保留的开头行数
        - 默认 4，限制在 0-1000 范围

    CMDPIPE_RECORDER_TAIL_LINES: 默认错误记录器保留的结尾行数
        - 默认 4，限制在 0-1000 范围

    CMDPIPE_POOL_IDLE_TIMEOUT: 默认线程池中空闲线程的存活时间（秒）
        - 默认 60.0，限制在 0.1-3600 范围

    CMDPIPE_KILL_TIMEOUT: 强制终止进程后等待其退出的时间（秒）
        - 默认 1.0，限制在 0.05-30 范围

    CMDPIPE_LOG_DEBUG: 日志调试模式（仅命令行入口使用）
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_LINE_WIDTH = 80
DEFAULT_HEAD_LINES = 4
DEFAULT_TAIL_LINES = 4
DEFAULT_POOL_IDLE_TIMEOUT = 60.0
DEFAULT_KILL_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, lower: int, upper: int) -> int:
    """解析整数环境变量，无效值返回默认值，有效值限制在 [lower, upper] 范围。"""
    if not value or not value.strip():
        return default
    try:
        number = int(value.strip())
    except ValueError:
        return default
    return max(lower, min(number, upper))


def _parse_float(value: str | None, default: float, lower: float, upper: float) -> float:
    """解析浮点数环境变量，规则同 _parse_int。"""
    if not value or not value.strip():
        return default
    try:
        number = float(value.strip())
    except ValueError:
        return default
    if number != number:  # NaN
        return default
    return max(lower, min(number, upper))


@dataclass
class Config:
    """cmdpipe 配置。

    Attributes:
        recorder_line_width: 错误记录器单行最大宽度
        recorder_head_lines: 错误记录器保留的开头行数
        recorder_tail_lines: 错误记录器保留的结尾行数
        pool_idle_timeout: 默认线程池空闲线程存活时间（秒）
        kill_timeout: 强制终止后等待进程退出的时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    recorder_line_width: int = DEFAULT_LINE_WIDTH
    recorder_head_lines: int = DEFAULT_HEAD_LINES
    recorder_tail_lines: int = DEFAULT_TAIL_LINES
    pool_idle_timeout: float = DEFAULT_POOL_IDLE_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(recorder_line_width={self.recorder_line_width}, "
            f"recorder_head_lines={self.recorder_head_lines}, "
            f"recorder_tail_lines={self.recorder_tail_lines}, "
            f"pool_idle_timeout={self.pool_idle_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "cmdpipe"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"cmdpipe_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CMDPIPE_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        recorder_line_width=_parse_int(
            os.environ.get("CMDPIPE_RECORDER_LINE_WIDTH"), DEFAULT_LINE_WIDTH, 10, 4096
        ),
        recorder_head_lines=_parse_int(
            os.environ.get("CMDPIPE_RECORDER_HEAD_LINES"), DEFAULT_HEAD_LINES, 0, 1000
        ),
        recorder_tail_lines=_parse_int(
            os.environ.get("CMDPIPE_RECORDER_TAIL_LINES"), DEFAULT_TAIL_LINES, 0, 1000
        ),
        pool_idle_timeout=_parse_float(
            os.environ.get("CMDPIPE_POOL_IDLE_TIMEOUT"), DEFAULT_POOL_IDLE_TIMEOUT, 0.1, 3600.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("CMDPIPE_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.05, 30.0
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
