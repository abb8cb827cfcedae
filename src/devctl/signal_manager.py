"""信号管理模块。

把 OS 信号转换为子进程的取消请求：
- SIGINT / SIGTERM: 设置取消事件，子进程收到 SIGTERM 并有 term_timeout 的宽限期
- 双击 SIGINT: 设置强制事件，跳过宽限期直接 SIGKILL

取消事件和强制事件交给 ProcessRunner.run(cancel=..., kill=...)。
信号处理器只作用于当前事件循环，在 stop() 时恢复。

支持的配置：
- DEVCTL_SIGINT_DOUBLE_TAP_WINDOW: 双击强制结束窗口时间
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Optional

from .config import get_config

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        cancel = asyncio.Event()
        signal_manager = SignalManager(cancel)

        await signal_manager.start()
        try:
            result = await runner.run(
                spec, cancel=cancel, kill=signal_manager.force_event
            )
        finally:
            await signal_manager.stop()
        ```

    Attributes:
        cancel_event: 调用方持有的取消事件
        force_event: 双击 SIGINT 时设置的强制事件
        double_tap_window: 双击窗口时间（秒）
    """

    def __init__(
        self,
        cancel_event: asyncio.Event,
        force_event: Optional[asyncio.Event] = None,
        double_tap_window: Optional[float] = None,
    ) -> None:
        self.cancel_event = cancel_event
        self.force_event = force_event if force_event is not None else asyncio.Event()
        self.double_tap_window = (
            double_tap_window
            if double_tap_window is not None
            else get_config().sigint_double_tap_window
        )

        self._last_sigint_time: Optional[float] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._original_sigint_handler = None

    @property
    def is_force_kill(self) -> bool:
        """是否请求强制结束（双击 SIGINT）。"""
        return self.force_event.is_set()

    async def start(self) -> None:
        """安装信号处理器。必须在 asyncio 事件循环中调用。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (double_tap_window={self.double_tap_window}s)"
            )
        else:
            # Windows: 使用 signal.signal() 设置处理器
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """恢复原始信号处理器。"""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            self._loop.remove_signal_handler(signal.SIGINT)
            self._loop.remove_signal_handler(signal.SIGTERM)
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)

        logger.debug("Signal handlers removed")

    def _handle_sigint(self) -> None:
        """处理 SIGINT。

        - 第一次：取消子进程（SIGTERM + 宽限期）
        - 取消后窗口内再次 SIGINT：强制结束（SIGKILL）
        """
        current_time = time.monotonic()
        last = self._last_sigint_time
        self._last_sigint_time = current_time

        if (
            self.cancel_event.is_set()
            and last is not None
            and current_time - last < self.double_tap_window
        ):
            if not self.force_event.is_set():
                logger.warning("Double SIGINT detected, killing process")
            self.force_event.set()
            return

        if not self.cancel_event.is_set():
            logger.info("SIGINT received, cancelling running process (press again to kill)")
        self.cancel_event.set()

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM：取消子进程。"""
        logger.info("SIGTERM received, cancelling running process")
        self.cancel_event.set()
