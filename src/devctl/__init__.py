"""devctl - 本地开发容器工具核心。

组件:
    streams: 容器引擎多路复用输出流的拆分
    keystore: secret 的加密存储
    runtime: 受监督的子进程执行

环境变量见 devctl.config。

用法:
    devctl run -- docker compose up
    devctl secret set GITHUB_TOKEN
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
