"""Keystore 服务。

按名称选择 keystore 提供者，并提供统一的 get/set/delete 入口。
提供者名称来自参数或配置 (DEVCTL_KEYSTORE)，默认 "file"。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Union

from .errors import KeystoreError
from .store import FileKeystore, FileKeystoreProvider, PasswordSource

__all__ = ["KeystoreService", "KeystoreProvider", "DEFAULT_PROVIDER"]

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "file"


class KeystoreProvider(Protocol):
    """Keystore 提供者接口。"""

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]: ...

    def set(self, name: str, value: str) -> None: ...

    def delete(self, name: str) -> bool: ...


ProviderFactory = Callable[[], KeystoreProvider]


class KeystoreService:
    """Keystore 服务。

    Example:
        ```python
        service = KeystoreService(Path("~/.devctl/keystore.json"), prompt_password)
        service.set("GITHUB_TOKEN", token)
        token = service.get(["GITHUB_TOKEN", "GH_TOKEN"])
        ```

    Attributes:
        default_provider: 未指定名称时使用的提供者
    """

    def __init__(
        self,
        keystore_path: Path | str,
        password_source: PasswordSource,
        default_provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self.default_provider = default_provider or DEFAULT_PROVIDER
        self._factories: Dict[str, ProviderFactory] = {
            "file": lambda: FileKeystoreProvider(
                FileKeystore(keystore_path), password_source
            ),
        }
        self._instances: Dict[str, KeystoreProvider] = {}

    def has_provider(self, name: str) -> bool:
        return name in self._factories

    def register_provider(self, name: str, factory: ProviderFactory) -> None:
        """注册额外的提供者。

        Raises:
            KeystoreError: 名称已被注册
        """
        if name in self._factories:
            raise KeystoreError(f"Provider {name} already registered")
        self._factories[name] = factory
        logger.debug(f"Registered keystore provider: {name}")

    def provider(self, name: Optional[str] = None) -> KeystoreProvider:
        """获取提供者实例（同名实例复用，密码只询问一次）。

        Raises:
            KeystoreError: 未知的提供者名称
        """
        name = name or self.default_provider
        if name not in self._factories:
            raise KeystoreError(f'Unknown keystore provider "{name}"')
        if name not in self._instances:
            self._instances[name] = self._factories[name]()
        return self._instances[name]

    def get(
        self,
        keys: Union[str, list[str]],
        default: Optional[str] = None,
    ) -> Optional[str]:
        """读取 secret。

        keys 为列表时，返回第一个非空值。
        """
        provider = self.provider()

        if isinstance(keys, list):
            for key in keys:
                value = provider.get(key)
                if value:
                    return value
            return default

        return provider.get(keys, default)

    def set(self, key: str, value: str) -> None:
        self.provider().set(key, value)

    def delete(self, key: str) -> bool:
        return self.provider().delete(key)
