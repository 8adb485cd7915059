"""服务容器 — 统一依赖注入，消除驱动与协作方的裸构造

同一容器内的驱动共享一个 BuildContext（执行器 + 主机视图），
因此 dry-run 下所有驱动看到的是同一份模拟状态。

用法:
    container = ServiceContainer(cfg, dry_run=True)
    container.zfs.create_root_dataset("noble-test")

    # 测试中替换协作方
    container = ServiceContainer(cfg, inner=RecordingExecutor(), host=SimulatedHostState())
    container.override("installer", FakeInstaller())
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from zfsroot.services.context import BuildContext

if TYPE_CHECKING:
    from zfsroot.core.config import Config
    from zfsroot.core.status import BuildStatusStore
    from zfsroot.services.collaborators import (
        ConfigurationRunner,
        DistroResolver,
        OsInstaller,
        PackageProvider,
    )
    from zfsroot.services.host import HostState
    from zfsroot.services.nspawn import ContainerDriver
    from zfsroot.services.zfs import ZfsDriver
    from zfsroot.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(
        self, config: Config | None = None, *,
        dry_run: bool = False, debug: bool = False,
        inner: CommandExecutor | None = None,
        host: HostState | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from zfsroot.core.config import get_config
            config = get_config()
        self._config = config
        self._context = BuildContext.from_config(
            config, dry_run=dry_run, debug=debug, inner=inner, host=host,
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def context(self) -> BuildContext:
        return self._context

    def override(self, name: str, instance: object) -> None:
        """替换某个服务实例（测试注入）"""
        self._instances[name] = instance

    # ---- 驱动 ----

    @property
    def zfs(self) -> ZfsDriver:
        if "zfs" not in self._instances:
            from zfsroot.services.zfs import ZfsDriver
            self._instances["zfs"] = ZfsDriver(self._context)
        return self._instances["zfs"]  # type: ignore[return-value]

    @property
    def containers(self) -> ContainerDriver:
        if "containers" not in self._instances:
            from zfsroot.services.nspawn import ContainerDriver
            self._instances["containers"] = ContainerDriver(self._context)
        return self._instances["containers"]  # type: ignore[return-value]

    @property
    def status(self) -> BuildStatusStore:
        if "status" not in self._instances:
            from zfsroot.core.status import BuildStatusStore
            self._instances["status"] = BuildStatusStore(self._config.status_dir)
        return self._instances["status"]  # type: ignore[return-value]

    # ---- 协作方 ----

    @property
    def packages(self) -> PackageProvider:
        if "packages" not in self._instances:
            from zfsroot.services.collaborators import ProfilePackageProvider
            self._instances["packages"] = ProfilePackageProvider(self._config)
        return self._instances["packages"]  # type: ignore[return-value]

    @property
    def resolver(self) -> DistroResolver:
        if "resolver" not in self._instances:
            from zfsroot.services.collaborators import StaticDistroResolver
            self._instances["resolver"] = StaticDistroResolver(self._config)
        return self._instances["resolver"]  # type: ignore[return-value]

    @property
    def installer(self) -> OsInstaller:
        if "installer" not in self._instances:
            from zfsroot.services.collaborators import DockerMmdebstrapInstaller
            self._instances["installer"] = DockerMmdebstrapInstaller(self._context)
        return self._instances["installer"]  # type: ignore[return-value]

    @property
    def configurer(self) -> ConfigurationRunner:
        if "configurer" not in self._instances:
            from zfsroot.services.collaborators import NspawnAnsibleRunner
            self._instances["configurer"] = NspawnAnsibleRunner(self._context)
        return self._instances["configurer"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def configure_container(
    config: Config | None = None, *, dry_run: bool = False, debug: bool = False,
) -> ServiceContainer:
    """按 CLI 选项重建全局容器"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = ServiceContainer(config, dry_run=dry_run, debug=debug)
        logger.debug("服务容器已配置 (dry_run=%s, debug=%s)", dry_run, debug)
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
