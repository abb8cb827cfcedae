"""devctl 应用入口。

包含命令行解析、日志配置和各子命令的实现：
    devctl run [--inherit] [--cwd DIR] -- CMD [ARGS...]
    devctl demux [FILE]
    devctl secret set|get|rm NAME
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

import anyio
from anyio.streams.file import FileReadStream

from .config import Config, get_config
from .keystore import KeystoreError, KeystoreService
from .runtime import OutcomeKind, ProcessResult, ProcessRunner, ProcessSpec, StdioMode
from .signal_manager import SignalManager
from .streams import MalformedFrameError, pump_frames

__all__ = ["main", "run_cli", "exit_status", "build_parser"]

logger = logging.getLogger(__name__)

# 子进程无法启动时的退出码（与 shell 一致）
EXIT_SPAWN_FAILED = 127
# 被取消时的退出码：128 + SIGINT(2)
EXIT_CANCELLED = 130

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def exit_status(result: ProcessResult) -> int:
    """把 ProcessResult 映射为 devctl 自身的退出码。"""
    if result.kind == OutcomeKind.EXITED:
        return result.exit_code or 0
    if result.kind == OutcomeKind.SIGNALED:
        signum = result.signal_number
        return 128 + signum if signum is not None else 1
    if result.kind == OutcomeKind.SPAWN_FAILED:
        return EXIT_SPAWN_FAILED
    return EXIT_CANCELLED


def _password_source() -> str:
    """主密码：优先读取 DEVCTL_KEYSTORE_PASSWORD，否则交互式输入。"""
    password = os.environ.get("DEVCTL_KEYSTORE_PASSWORD")
    if password:
        return password
    return getpass.getpass("Keystore password: ")


async def _run_command(config: Config, args: argparse.Namespace) -> int:
    """执行 run 子命令。"""
    argv = list(args.command)
    if argv and argv[0] == "--":
        argv = argv[1:]
    if not argv:
        logger.error("No command given")
        return 2

    spec = ProcessSpec(
        argv=argv,
        cwd=Path(args.cwd) if args.cwd else None,
        stdio=StdioMode.INHERIT if args.inherit else StdioMode.CAPTURE,
    )
    runner = ProcessRunner(
        term_timeout=config.term_timeout,
        kill_timeout=config.kill_timeout,
    )

    def forward_stdout(chunk: bytes) -> None:
        sys.stdout.buffer.write(chunk)
        sys.stdout.buffer.flush()

    def forward_stderr(chunk: bytes) -> None:
        sys.stderr.buffer.write(chunk)
        sys.stderr.buffer.flush()

    cancel = asyncio.Event()
    signal_manager = SignalManager(cancel)

    logger.info(f" > {spec.display}")
    await signal_manager.start()
    try:
        result = await runner.run(
            spec,
            cancel=cancel,
            kill=signal_manager.force_event,
            on_stdout=forward_stdout,
            on_stderr=forward_stderr,
        )
    finally:
        await signal_manager.stop()

    if result.ok:
        logger.debug(f"Command {result.describe()}")
    else:
        logger.warning(f"Command {result.describe()}")
    return exit_status(result)


async def _demux_command(args: argparse.Namespace) -> int:
    """执行 demux 子命令：拆分多路复用的输出流。"""
    stdout = anyio.wrap_file(sys.stdout.buffer)
    stderr = anyio.wrap_file(sys.stderr.buffer)

    # 按固定大小的块读取（二进制流不按行切分）
    try:
        if args.file and args.file != "-":
            async with await FileReadStream.from_path(args.file) as source:
                written = await pump_frames(source, stdout, stderr)
        else:
            written = await pump_frames(FileReadStream(sys.stdin.buffer), stdout, stderr)
    except MalformedFrameError as e:
        logger.error(f"Malformed stream: {e}")
        return 1
    except OSError as e:
        logger.error(f"Cannot read stream: {e}")
        return 1
    finally:
        await stdout.flush()
        await stderr.flush()

    logger.debug(f"Demultiplexed stream: {dict((k.name, v) for k, v in written.items())}")
    return 0


def _secret_command(config: Config, args: argparse.Namespace) -> int:
    """执行 secret 子命令。"""
    service = KeystoreService(
        config.keystore_path,
        _password_source,
        default_provider=config.keystore_provider,
    )

    try:
        if args.action == "set":
            value = args.value
            if value is None:
                value = getpass.getpass("Secret value: ")
            service.set(args.name, value)
            return 0

        if args.action == "get":
            value = service.get(args.name)
            if value is None:
                logger.error(f"Secret {args.name!r} not found")
                return 1
            print(value)
            return 0

        if not service.delete(args.name):
            logger.error(f"Secret {args.name!r} not found")
            return 1
        return 0

    except KeystoreError as e:
        logger.error(f"Keystore error: {e}")
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devctl",
        description="Local development container tooling",
    )
    subparsers = parser.add_subparsers(dest="command_name", required=True)

    run_parser = subparsers.add_parser("run", help="Run a command under supervision")
    run_parser.add_argument(
        "--inherit",
        action="store_true",
        help="Let the command use this terminal directly",
    )
    run_parser.add_argument("--cwd", help="Working directory")
    run_parser.add_argument("command", nargs=argparse.REMAINDER)

    demux_parser = subparsers.add_parser(
        "demux",
        help="Split a multiplexed container output stream into stdout/stderr",
    )
    demux_parser.add_argument("file", nargs="?", default="-")

    secret_parser = subparsers.add_parser("secret", help="Manage keystore secrets")
    secret_parser.add_argument("action", choices=["set", "get", "rm"])
    secret_parser.add_argument("name")
    secret_parser.add_argument("--value", help="Secret value (prompted if omitted)")

    return parser


def setup_logging(config: Config) -> None:
    """配置日志输出。"""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    # 只对 devctl 命名空间启用详细日志
    logging.getLogger("devctl").setLevel(log_level)


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    """解析参数并执行子命令，返回退出码。"""
    args = build_parser().parse_args(argv)
    config = get_config()
    logger.debug(f"Loaded {config}")

    if args.command_name == "run":
        return asyncio.run(_run_command(config, args))
    if args.command_name == "demux":
        return asyncio.run(_demux_command(args))
    return _secret_command(config, args)


def main() -> None:
    """主入口点。"""
    setup_logging(get_config())
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
