"""构建上下文 - 显式传给每个驱动与阶段的运行参数

替代全局变量（存储池 / 挂载根 / dry-run / debug），
驱动只读取 BuildContext，不读取任何进程级全局状态。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from zfsroot.core.config import Config
from zfsroot.services.host import HostState, SimulatedHostState, SystemHostState
from zfsroot.utils.shell import CommandExecutor, GuardedExecutor, LocalExecutor


@dataclass
class BuildContext:
    """单次运行的上下文"""

    config: Config = field(default_factory=Config)
    dry_run: bool = False
    debug: bool = False
    executor: GuardedExecutor = field(default_factory=GuardedExecutor)
    host: HostState = field(default_factory=SystemHostState)

    @classmethod
    def from_config(
        cls, config: Config, *, dry_run: bool = False, debug: bool = False,
        inner: CommandExecutor | None = None,
        host: HostState | None = None,
    ) -> BuildContext:
        """按模式装配执行器与主机视图

        dry-run 使用以配置存储池为种子的模拟主机，真实模式读取系统状态。
        """
        inner = inner or LocalExecutor()
        if host is None:
            if dry_run:
                host = SimulatedHostState().add_pool(config.pool)
            else:
                host = SystemHostState(inner)
        return cls(
            config=config, dry_run=dry_run, debug=debug,
            executor=GuardedExecutor(inner, dry_run=dry_run, debug=debug),
            host=host,
        )

    # ---- 命名约定 ----

    @property
    def pool(self) -> str:
        return self.config.pool

    @property
    def mount_base(self) -> str:
        return self.config.mount_base.rstrip("/") or "/"

    @property
    def root_parent(self) -> str:
        """<pool>/ROOT"""
        return f"{self.pool}/{self.config.root_dataset}"

    def root_dataset(self, build: str) -> str:
        return f"{self.root_parent}/{build}"

    def varlog_dataset(self, build: str) -> str:
        return f"{self.root_dataset(build)}/varlog"

    def mount_point(self, build: str) -> str:
        return f"{self.mount_base}/{build}"

    def varlog_mount_point(self, build: str) -> str:
        return f"{self.mount_point(build)}/var/log"
