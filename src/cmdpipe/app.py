"""cmdpipe 命令行入口。

用法:
    python -m cmdpipe [--timeout S] [--cwd DIR] [--env NAME=VALUE] [--unset NAME] -- COMMAND ...

子进程的 stdout 原样转发到本进程 stdout；stderr 由默认错误记录器收集，
失败时输出诊断信息。退出码：
    - 子进程的退出码（正常结束）
    - 124: 超时被终止
    - 125: 其他执行失败（启动失败、handler 异常）
    - 130: 被中断
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
from typing import BinaryIO, Sequence

from .command import Command, EnvVar, cmdline
from .config import get_config
from .errors import CommandError, CommandInterruptedError, CommandTimeoutError
from .runtime.context import ExecutionContextFilter

__all__ = ["build_parser", "build_command", "run", "main"]

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_FAILURE = 125
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(execution)s): %(message)s"


def _parse_env(value: str) -> EnvVar:
    """解析 NAME=VALUE 形式的环境变量参数。"""
    name, sep, val = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    try:
        return EnvVar(name, val)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdpipe",
        description="Run a command with timeout and process-tree cleanup",
    )
    parser.add_argument("--timeout", type=float, default=0.0, help="Timeout in seconds (0 = none)")
    parser.add_argument("--cwd", type=str, default=None, help="Working directory")
    parser.add_argument(
        "--env", type=_parse_env, action="append", default=[], metavar="NAME=VALUE",
        help="Set an environment variable (repeatable)",
    )
    parser.add_argument(
        "--unset", action="append", default=[], metavar="NAME",
        help="Remove an environment variable (repeatable)",
    )
    parser.add_argument("--inherit-io", action="store_true", help="Connect the child to this terminal")
    parser.add_argument(
        "--no-kill-descendants", action="store_true",
        help="Only kill the process itself on timeout/failure",
    )
    parser.add_argument("--new-session", action="store_true", help="Start the child in a new session")
    parser.add_argument("--encoding", type=str, default=None, help="Encoding of the child's stderr")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")
    return parser


def _forward_to(target: BinaryIO):
    def handler(stream: BinaryIO) -> int:
        shutil.copyfileobj(stream, target)
        target.flush()
        return 0

    return handler


def build_command(args: argparse.Namespace, stdout: BinaryIO | None = None) -> Command:
    """根据命令行参数构建 Command。"""
    argv = list(args.command)
    if argv and argv[0] == "--":
        argv = argv[1:]

    command = cmdline(argv).with_timeout(args.timeout)
    if args.cwd:
        command = command.with_working_directory(args.cwd)
    if args.env:
        command = command.with_envs(*args.env)
    for name in args.unset:
        command = command.with_env(name, None)
    if args.encoding:
        command = command.with_encoding(args.encoding)
    command = (
        command.with_inherit_io(args.inherit_io)
        .with_kill_descendants(not args.no_kill_descendants)
        .with_new_session(args.new_session)
    )
    if not args.inherit_io:
        command = command.handle_stdout(_forward_to(stdout or sys.stdout.buffer))
    return command


def run(argv: Sequence[str] | None = None, stdout: BinaryIO | None = None) -> int:
    """执行命令并返回退出码。"""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = build_command(args, stdout=stdout)

    try:
        result = command.execute()
    except CommandTimeoutError as e:
        logger.debug(e.summary)
        print(e, file=sys.stderr)
        return EXIT_TIMEOUT
    except CommandInterruptedError as e:
        logger.warning(e.summary)
        return EXIT_INTERRUPTED
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED
    except CommandError as e:
        logger.debug(e.summary)
        print(e, file=sys.stderr)
        return EXIT_FAILURE

    if result.exit_code != 0 and result.stderr_snapshot:
        print(result.stderr_snapshot, file=sys.stderr)
    logger.debug(f"Command finished: {result!r}")
    return result.exit_code


def setup_logging() -> None:
    """配置日志输出。"""
    config = get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ExecutionContextFilter())
    log_handlers.append(handler)

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 cmdpipe 命名空间启用详细日志
    logging.getLogger("cmdpipe").setLevel(log_level)


def main() -> None:
    """主入口点。"""
    setup_logging()
    sys.exit(run())


if __name__ == "__main__":
    main()
