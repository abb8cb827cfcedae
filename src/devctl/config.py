"""devctl 环境变量配置管理。

环境变量:
    DEVCTL_HOME: 数据目录
        - 默认 ~/.devctl

    DEVCTL_KEYSTORE_PATH: keystore 文件路径
        - 默认 $DEVCTL_HOME/keystore.json

    DEVCTL_KEYSTORE: keystore 提供者名称
        - 默认 file

    DEVCTL_TERM_TIMEOUT: 取消子进程时 SIGTERM 后的等待时间（秒）
        - 默认 2.0，限制在 0.1-60 秒

    DEVCTL_KILL_TIMEOUT: SIGKILL 后的等待时间（秒）
        - 默认 1.0，限制在 0.1-60 秒

    DEVCTL_SIGINT_DOUBLE_TAP_WINDOW: 取消后再次 Ctrl+C 直接 SIGKILL 的窗口时间（秒）
        - 默认 1.0 秒，限制在 0.1-10 秒

    DEVCTL_LOG_DEBUG: 日志调试模式
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


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    """解析超时时间，限制在 0.1-60 秒范围。"""
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(0.1, min(timeout, 60.0))


def _parse_double_tap_window(value: str | None) -> float:
    """解析双击窗口时间环境变量。"""
    if not value:
        return 1.0
    try:
        window = float(value)
        return max(0.1, min(window, 10.0))
    except ValueError:
        return 1.0


@dataclass
class Config:
    """devctl 配置。

    Attributes:
        home: 数据目录
        keystore_path: keystore 文件路径
        keystore_provider: keystore 提供者名称
        term_timeout: SIGTERM 后等待时间
        kill_timeout: SIGKILL 后等待时间
        sigint_double_tap_window: 双击强制结束窗口时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    home: Path
    keystore_path: Path
    keystore_provider: str = "file"
    term_timeout: float = 2.0
    kill_timeout: float = 1.0
    sigint_double_tap_window: float = 1.0
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(home={self.home}, "
            f"keystore_path={self.keystore_path}, "
            f"keystore_provider={self.keystore_provider}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成临时目录下带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "devctl"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"devctl_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    home = Path(os.environ.get("DEVCTL_HOME") or Path.home() / ".devctl").expanduser()
    keystore_path = os.environ.get("DEVCTL_KEYSTORE_PATH")

    log_debug = _parse_bool(os.environ.get("DEVCTL_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        home=home,
        keystore_path=(
            Path(keystore_path).expanduser() if keystore_path else home / "keystore.json"
        ),
        keystore_provider=(os.environ.get("DEVCTL_KEYSTORE") or "file").strip().lower(),
        term_timeout=_parse_timeout(os.environ.get("DEVCTL_TERM_TIMEOUT"), 2.0),
        kill_timeout=_parse_timeout(os.environ.get("DEVCTL_KILL_TIMEOUT"), 1.0),
        sigint_double_tap_window=_parse_double_tap_window(
            os.environ.get("DEVCTL_SIGINT_DOUBLE_TAP_WINDOW")
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
