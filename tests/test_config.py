"""Config 模块测试。

测试 CMDPIPE_* 环境变量解析和配置管理。
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest import mock

import pytest

from cmdpipe.config import Config, get_config, load_config, reload_config


class TestDefaults:
    """测试默认值。"""

    def test_defaults(self):
        """未设置任何环境变量时使用默认值。"""
        config = load_config()
        assert config.recorder_line_width == 80
        assert config.recorder_head_lines == 4
        assert config.recorder_tail_lines == 4
        assert config.pool_idle_timeout == 60.0
        assert config.kill_timeout == 1.0
        assert config.log_debug is False
        assert config.log_file is None

    def test_dataclass_defaults_match(self):
        """dataclass 默认值与 load_config 一致。"""
        assert Config() == load_config()


class TestParseInt:
    """测试整数解析。"""

    def test_valid_value(self):
        with mock.patch.dict(os.environ, {"CMDPIPE_RECORDER_HEAD_LINES": "10"}, clear=False):
            assert load_config().recorder_head_lines == 10

    def test_whitespace(self):
        with mock.patch.dict(os.environ, {"CMDPIPE_RECORDER_TAIL_LINES": " 7 "}, clear=False):
            assert load_config().recorder_tail_lines == 7

    @pytest.mark.parametrize("value", ["", "   ", "abc", "1.5"])
    def test_invalid_uses_default(self, value: str):
        """无效值返回默认值。"""
        with mock.patch.dict(os.environ, {"CMDPIPE_RECORDER_LINE_WIDTH": value}, clear=False):
            assert load_config().recorder_line_width == 80

    def test_clamped_low(self):
        """低于下限时取下限。"""
        with mock.patch.dict(os.environ, {"CMDPIPE_RECORDER_LINE_WIDTH": "1"}, clear=False):
            assert load_config().recorder_line_width == 10

    def test_clamped_high(self):
        """超过上限时取上限。"""
        with mock.patch.dict(os.environ, {"CMDPIPE_RECORDER_HEAD_LINES": "99999"}, clear=False):
            assert load_config().recorder_head_lines == 1000

    def test_zero_allowed(self):
        """行数允许为 0。"""
        with mock.patch.dict(os.environ, {"CMDPIPE_RECORDER_TAIL_LINES": "0"}, clear=False):
            assert load_config().recorder_tail_lines == 0


class TestParseFloat:
    """测试浮点数解析。"""

    def test_valid_value(self):
        with mock.patch.dict(os.environ, {"CMDPIPE_KILL_TIMEOUT": "2.5"}, clear=False):
            assert load_config().kill_timeout == 2.5

    def test_nan_uses_default(self):
        with mock.patch.dict(os.environ, {"CMDPIPE_KILL_TIMEOUT": "nan"}, clear=False):
            assert load_config().kill_timeout == 1.0

    def test_clamped(self):
        with mock.patch.dict(os.environ, {"CMDPIPE_POOL_IDLE_TIMEOUT": "0"}, clear=False):
            assert load_config().pool_idle_timeout == 0.1
        with mock.patch.dict(os.environ, {"CMDPIPE_POOL_IDLE_TIMEOUT": "inf"}, clear=False):
            assert load_config().pool_idle_timeout == 3600.0


class TestParseBool:
    """测试布尔值解析。"""

    @pytest.mark.parametrize("value", ["true", "True", "TRUE", "1", "yes", "Yes", "on"])
    def test_truthy_values(self, value: str, tmp_path: Path):
        """真值。"""
        with mock.patch("tempfile.gettempdir", return_value=str(tmp_path)):
            with mock.patch.dict(os.environ, {"CMDPIPE_LOG_DEBUG": value}, clear=False):
                config = load_config()
        assert config.log_debug is True

    @pytest.mark.parametrize("value", ["false", "False", "FALSE", "0", "no", "No", "off", ""])
    def test_falsy_values(self, value: str):
        """假值。"""
        with mock.patch.dict(os.environ, {"CMDPIPE_LOG_DEBUG": value}, clear=False):
            config = load_config()
        assert config.log_debug is False
        assert config.log_file is None


class TestLogFile:
    """测试日志文件路径生成。"""

    def test_log_file_in_temp_dir(self, tmp_path: Path):
        """LOG_DEBUG 开启时在临时目录下生成日志路径。"""
        with mock.patch("tempfile.gettempdir", return_value=str(tmp_path)):
            with mock.patch.dict(os.environ, {"CMDPIPE_LOG_DEBUG": "1"}, clear=False):
                config = load_config()

        log_file = Path(config.log_file)
        assert log_file.parent == (tmp_path / "cmdpipe").resolve()
        assert log_file.name.startswith("cmdpipe_debug_")
        assert log_file.suffix == ".log"
        assert log_file.parent.is_dir()


class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_cached(self):
        """get_config 返回同一实例。"""
        assert get_config() is get_config()

    def test_reload_config(self):
        """reload_config 重新读取环境变量。"""
        before = get_config()
        with mock.patch.dict(os.environ, {"CMDPIPE_RECORDER_HEAD_LINES": "2"}, clear=False):
            after = reload_config()
        assert after is not before
        assert after.recorder_head_lines == 2
        assert get_config() is after

    def test_repr(self):
        """repr 包含所有字段。"""
        text = repr(Config())
        assert "recorder_line_width=80" in text
        assert "kill_timeout=1.0" in text
