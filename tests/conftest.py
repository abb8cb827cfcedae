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

from devctl.config import reload_config  # noqa: E402

_DEVCTL_ENV = (
    "DEVCTL_KEYSTORE",
    "DEVCTL_KEYSTORE_PASSWORD",
    "DEVCTL_TERM_TIMEOUT",
    "DEVCTL_KILL_TIMEOUT",
    "DEVCTL_SIGINT_DOUBLE_TAP_WINDOW",
    "DEVCTL_LOG_DEBUG",
)


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture(autouse=True)
def isolated_devctl_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """每个测试使用独立的 DEVCTL_HOME，避免读写真实的 keystore。"""
    for name in _DEVCTL_ENV:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "devctl-home"
    monkeypatch.setenv("DEVCTL_HOME", str(home))
    monkeypatch.delenv("DEVCTL_KEYSTORE_PATH", raising=False)
    reload_config()
    yield home
    monkeypatch.undo()
    reload_config()
