"""主机状态视图 - 驱动层读取资源状态的唯一入口

职责:
- 定义驱动所需的只读查询（数据集 / 快照 / 挂载 / 容器）
- 真实模式: SystemHostState 通过 zfs / zpool / findmnt / machinectl 读取真实状态
- dry-run:  SimulatedHostState 维护一份内存中的影子模型，
            驱动在每次变更成功后调用 note_* 同步该模型

这样 dry-run 的判断只依赖模拟出的状态，不会出现"读真实、写虚拟"的分叉，
整个 dry-run 流程也不会创建任何子进程。
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from zfsroot.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

# 看起来像操作系统根文件系统所需的目录
ROOTFS_MARKERS = ("etc", "usr", "bin", "sbin")


# =========================================================================
# 抽象基类
# =========================================================================


class HostState(ABC):
    """资源状态查询接口

    note_* 在真实模式下为空操作（命令已经改变了现实），
    模拟模式下更新影子模型。
    """

    @abstractmethod
    def pool_exists(self, pool: str) -> bool:
        """存储池是否存在"""

    @abstractmethod
    def dataset_exists(self, dataset: str) -> bool:
        """数据集是否存在"""

    @abstractmethod
    def list_children(self, dataset: str) -> list[str]:
        """直接子数据集（完整名称）"""

    @abstractmethod
    def get_property(self, dataset: str, prop: str) -> str | None:
        """数据集属性值，不存在返回 None"""

    @abstractmethod
    def get_pool_property(self, pool: str, prop: str) -> str | None:
        """存储池属性值"""

    @abstractmethod
    def list_snapshots(self, dataset: str) -> list[str]:
        """数据集自身的快照（完整名称），按创建时间从旧到新"""

    def snapshot_exists(self, snapshot: str) -> bool:
        dataset = snapshot.split("@", 1)[0]
        return snapshot in self.list_snapshots(dataset)

    @abstractmethod
    def is_mountpoint(self, path: str) -> bool:
        """路径上是否挂载了文件系统"""

    @abstractmethod
    def mounted_source(self, path: str) -> str | None:
        """挂载在 path 上的文件系统来源（数据集名），未挂载返回 None"""

    @abstractmethod
    def has_content(self, path: str) -> bool:
        """目录存在且非空"""

    @abstractmethod
    def looks_like_rootfs(self, path: str) -> bool:
        """目录下是否有 etc / usr / bin / sbin"""

    @abstractmethod
    def machine_running(self, name: str) -> bool:
        """容器是否已在 machinectl 注册（运行中）"""

    @abstractmethod
    def machine_image_exists(self, name: str) -> bool:
        """machinectl 是否登记了同名镜像"""

    @abstractmethod
    def running_machines(self) -> list[str]:
        """所有运行中的容器名"""

    # ---- 变更通知 ----

    def note_dataset_created(self, dataset: str, props: dict[str, str]) -> None:
        pass

    def note_dataset_destroyed(self, dataset: str) -> None:
        pass

    def note_property_set(self, dataset: str, prop: str, value: str) -> None:
        pass

    def note_pool_property_set(self, pool: str, prop: str, value: str) -> None:
        pass

    def note_snapshot_created(self, snapshot: str, recursive: bool = True) -> None:
        pass

    def note_snapshot_destroyed(self, snapshot: str, recursive: bool = True) -> None:
        pass

    def note_rolled_back(self, snapshot: str) -> None:
        pass

    def note_mounted(self, source: str, path: str) -> None:
        pass

    def note_unmounted(self, path: str) -> None:
        pass

    def note_moved(self, src: str, dst: str) -> None:
        pass

    def note_removed(self, path: str) -> None:
        pass

    def note_rootfs_installed(self, path: str) -> None:
        pass

    def note_machine_started(self, name: str) -> None:
        pass

    def note_machine_stopped(self, name: str) -> None:
        pass

    def note_machine_removed(self, name: str) -> None:
        pass


# =========================================================================
# 真实主机
# =========================================================================


class SystemHostState(HostState):
    """读取真实系统状态（只读命令，不经过 dry-run 守卫）"""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor: CommandExecutor = executor or LocalExecutor()

    def _ok(self, argv: list[str]) -> bool:
        return self.executor.execute(argv).success

    def _lines(self, argv: list[str]) -> list[str]:
        r = self.executor.execute(argv)
        if not r.success:
            return []
        return [ln.strip() for ln in r.stdout.splitlines() if ln.strip()]

    def pool_exists(self, pool: str) -> bool:
        return self._ok(["zpool", "list", "-H", "-o", "name", pool])

    def dataset_exists(self, dataset: str) -> bool:
        return self._ok(["zfs", "list", "-H", "-o", "name", dataset])

    def list_children(self, dataset: str) -> list[str]:
        names = self._lines(
            ["zfs", "list", "-H", "-o", "name", "-t", "filesystem", "-d", "1", dataset],
        )
        return [n for n in names if n != dataset]

    def get_property(self, dataset: str, prop: str) -> str | None:
        lines = self._lines(["zfs", "get", "-H", "-o", "value", prop, dataset])
        return lines[0] if lines else None

    def get_pool_property(self, pool: str, prop: str) -> str | None:
        lines = self._lines(["zpool", "get", "-H", "-o", "value", prop, pool])
        return lines[0] if lines else None

    def list_snapshots(self, dataset: str) -> list[str]:
        return self._lines([
            "zfs", "list", "-H", "-t", "snapshot", "-o", "name",
            "-s", "creation", "-d", "1", dataset,
        ])

    def snapshot_exists(self, snapshot: str) -> bool:
        return self._ok(["zfs", "list", "-H", "-t", "snapshot", "-o", "name", snapshot])

    def is_mountpoint(self, path: str) -> bool:
        return os.path.ismount(path)

    def mounted_source(self, path: str) -> str | None:
        if not self.is_mountpoint(path):
            return None
        lines = self._lines(["findmnt", "-n", "-o", "SOURCE", "--mountpoint", path])
        return lines[0] if lines else None

    def has_content(self, path: str) -> bool:
        p = Path(path)
        return p.is_dir() and any(p.iterdir())

    def looks_like_rootfs(self, path: str) -> bool:
        root = Path(path)
        return all((root / d).is_dir() for d in ROOTFS_MARKERS)

    def machine_running(self, name: str) -> bool:
        return self._ok(["machinectl", "show", name])

    def machine_image_exists(self, name: str) -> bool:
        return self._ok(["machinectl", "show-image", name])

    def running_machines(self) -> list[str]:
        return [ln.split()[0] for ln in self._lines(["machinectl", "list", "--no-legend"])]


# =========================================================================
# 模拟主机（dry-run / 测试）
# =========================================================================


def _is_under(path: str, base: str) -> bool:
    return path == base or path.startswith(base.rstrip("/") + "/")


@dataclass
class SimulatedHostState(HostState):
    """内存影子模型，驱动变更后通过 note_* 同步"""

    pools: dict[str, dict[str, str]] = field(default_factory=dict)
    datasets: dict[str, dict[str, str]] = field(default_factory=dict)
    snapshots: list[str] = field(default_factory=list)  # 按创建顺序
    mounts: dict[str, str] = field(default_factory=dict)  # path -> source
    contents: set[str] = field(default_factory=set)
    rootfs: set[str] = field(default_factory=set)
    machines: dict[str, bool] = field(default_factory=dict)  # name -> running

    # ---- 种子数据 ----

    def add_pool(self, pool: str, **props: str) -> SimulatedHostState:
        self.pools.setdefault(pool, {}).update(props)
        return self

    def add_dataset(self, dataset: str, **props: str) -> SimulatedHostState:
        self.datasets.setdefault(dataset, {}).update(props)
        return self

    def add_content(self, path: str) -> SimulatedHostState:
        self.contents.add(path)
        return self

    # ---- 查询 ----

    def pool_exists(self, pool: str) -> bool:
        return pool in self.pools

    def dataset_exists(self, dataset: str) -> bool:
        return dataset in self.datasets

    def list_children(self, dataset: str) -> list[str]:
        prefix = dataset + "/"
        return sorted(
            d for d in self.datasets
            if d.startswith(prefix) and "/" not in d[len(prefix):]
        )

    def get_property(self, dataset: str, prop: str) -> str | None:
        props = self.datasets.get(dataset)
        if props is None:
            return None
        if prop == "mounted":
            return "yes" if dataset in self.mounts.values() else "no"
        return props.get(prop)

    def get_pool_property(self, pool: str, prop: str) -> str | None:
        props = self.pools.get(pool)
        if props is None:
            return None
        return props.get(prop, "ONLINE" if prop == "health" else "-")

    def list_snapshots(self, dataset: str) -> list[str]:
        return [s for s in self.snapshots if s.split("@", 1)[0] == dataset]

    def is_mountpoint(self, path: str) -> bool:
        return path in self.mounts

    def mounted_source(self, path: str) -> str | None:
        return self.mounts.get(path)

    def has_content(self, path: str) -> bool:
        return any(_is_under(c, path) for c in self.contents)

    def looks_like_rootfs(self, path: str) -> bool:
        return path in self.rootfs

    def machine_running(self, name: str) -> bool:
        return self.machines.get(name, False)

    def machine_image_exists(self, name: str) -> bool:
        return name in self.machines

    def running_machines(self) -> list[str]:
        return sorted(n for n, running in self.machines.items() if running)

    # ---- 变更通知 ----

    def note_dataset_created(self, dataset: str, props: dict[str, str]) -> None:
        self.datasets[dataset] = dict(props)

    def note_dataset_destroyed(self, dataset: str) -> None:
        for name in [d for d in self.datasets if _is_under(d, dataset)]:
            del self.datasets[name]
        self.snapshots = [
            s for s in self.snapshots if not _is_under(s.split("@", 1)[0], dataset)
        ]

    def note_property_set(self, dataset: str, prop: str, value: str) -> None:
        if dataset in self.datasets:
            self.datasets[dataset][prop] = value

    def note_pool_property_set(self, pool: str, prop: str, value: str) -> None:
        self.pools.setdefault(pool, {})[prop] = value

    def note_snapshot_created(self, snapshot: str, recursive: bool = True) -> None:
        dataset, label = snapshot.split("@", 1)
        targets = [d for d in self.datasets if _is_under(d, dataset)] if recursive else [dataset]
        for d in sorted(targets):
            name = f"{d}@{label}"
            if name not in self.snapshots:
                self.snapshots.append(name)

    def note_snapshot_destroyed(self, snapshot: str, recursive: bool = True) -> None:
        dataset, label = snapshot.split("@", 1)
        self.snapshots = [
            s for s in self.snapshots
            if not (s == snapshot or (
                recursive and s.endswith("@" + label)
                and _is_under(s.split("@", 1)[0], dataset)
            ))
        ]

    def note_rolled_back(self, snapshot: str) -> None:
        # rollback -r 销毁同一数据集上比目标更新的快照
        dataset = snapshot.split("@", 1)[0]
        own = self.list_snapshots(dataset)
        if snapshot not in own:
            return
        newer = own[own.index(snapshot) + 1:]
        self.snapshots = [s for s in self.snapshots if s not in newer]

    def note_mounted(self, source: str, path: str) -> None:
        self.mounts[path] = source

    def note_unmounted(self, path: str) -> None:
        for p in [p for p in self.mounts if _is_under(p, path)]:
            del self.mounts[p]

    def note_moved(self, src: str, dst: str) -> None:
        moved = {c for c in self.contents if _is_under(c, src)}
        self.contents -= moved
        self.contents |= {dst + c[len(src):] for c in moved}

    def note_removed(self, path: str) -> None:
        self.contents = {c for c in self.contents if not _is_under(c, path)}

    def note_rootfs_installed(self, path: str) -> None:
        self.rootfs.add(path)
        self.contents.add(path.rstrip("/") + "/var/log")

    def note_machine_started(self, name: str) -> None:
        self.machines[name] = True

    def note_machine_stopped(self, name: str) -> None:
        if name in self.machines:
            self.machines[name] = False

    def note_machine_removed(self, name: str) -> None:
        self.machines.pop(name, None)
