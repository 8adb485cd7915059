"""ZFS 数据集驱动

每个构建两个约定数据集:
    <pool>/ROOT/<build>          根数据集（构建期间 mountpoint=legacy）
    <pool>/ROOT/<build>/varlog   /var/log 独立数据集

除 destroy 与 rollback_snapshot（显式破坏性操作，先做存在性检查）外，
所有操作连续调用两次都是安全的。
变更命令一律经过 ctx.executor（dry-run 只打印），成功后通过 ctx.host.note_* 同步状态视图。
"""

from __future__ import annotations

import logging
from datetime import datetime

from zfsroot.core.exceptions import (
    AlreadyExistsError,
    BusyError,
    NotFoundError,
    ValidationError,
)
from zfsroot.core.models import SNAPSHOT_PREFIX, SNAPSHOT_TIMESTAMP_FORMAT, RootDatasetInfo
from zfsroot.core.validation import validate_build_name
from zfsroot.services.context import BuildContext
from zfsroot.services.host import HostState

logger = logging.getLogger(__name__)

ROOT_PARENT_PROPS = {"canmount": "off", "mountpoint": "none"}
ROOT_DATASET_PROPS = {"canmount": "noauto", "mountpoint": "legacy"}
VARLOG_DATASET_PROPS = {"mountpoint": "legacy"}


def _create_argv(dataset: str, props: dict[str, str]) -> list[str]:
    argv = ["zfs", "create"]
    for k, v in props.items():
        argv += ["-o", f"{k}={v}"]
    return argv + [dataset]


class ZfsDriver:
    """ZFS 数据集 / 快照 / 启动环境操作"""

    def __init__(self, ctx: BuildContext) -> None:
        self.ctx = ctx

    @property
    def host(self) -> HostState:
        return self.ctx.host

    # =====================================================================
    # 存储池
    # =====================================================================

    def check_pool(self) -> None:
        """存储池必须存在；非 ONLINE 只告警"""
        pool = self.ctx.pool
        if not self.host.pool_exists(pool):
            raise NotFoundError(
                f"ZFS 存储池不存在: {pool}（可用 'sudo zpool create {pool} <device>' 创建）"
            )
        health = self.host.get_pool_property(pool, "health")
        if health and health not in ("ONLINE", "-"):
            logger.warning("存储池 %s 状态: %s（请检查 'sudo zpool status %s'）", pool, health, pool)

    # =====================================================================
    # 数据集
    # =====================================================================

    def _create(self, dataset: str, props: dict[str, str]) -> None:
        self.ctx.executor.run(_create_argv(dataset, props), label="创建数据集")
        self.host.note_dataset_created(dataset, props)
        logger.info("已创建数据集: %s", dataset)

    def create_root_dataset(self, build: str, cleanup: bool = False) -> str:
        """创建 pool/ROOT、根数据集与 varlog 子数据集，返回根数据集名

        根数据集已存在且未要求 cleanup 时抛 AlreadyExistsError（状态不变）；
        cleanup=True 时先递归销毁（连同所有快照）再重建。
        """
        validate_build_name(build)
        self.check_pool()
        ctx = self.ctx
        root = ctx.root_dataset(build)

        if not self.host.dataset_exists(ctx.root_parent):
            self._create(ctx.root_parent, ROOT_PARENT_PROPS)

        if self.host.dataset_exists(root):
            if not cleanup:
                raise AlreadyExistsError(
                    f"根数据集已存在: {root}（使用 cleanup 重新创建）"
                )
            logger.info("cleanup: 销毁已有根数据集 %s", root)
            self.destroy(
                root, recursive=True, force=True,
                container=build, mount_point=ctx.mount_point(build),
            )

        self._create(root, ROOT_DATASET_PROPS)
        varlog = ctx.varlog_dataset(build)
        if not self.host.dataset_exists(varlog):
            self._create(varlog, VARLOG_DATASET_PROPS)
        logger.info("根数据集结构已就绪: %s", root)
        return root

    def mount_root_dataset(self, build: str) -> str:
        """把根数据集挂载到 <mount_base>/<build>，已挂载则跳过；返回挂载点"""
        ctx = self.ctx
        root = ctx.root_dataset(build)
        mp = ctx.mount_point(build)
        if not self.host.dataset_exists(root):
            raise NotFoundError(f"根数据集不存在: {root}")

        source = self.host.mounted_source(mp)
        if source == root:
            logger.info("根数据集已挂载: %s -> %s", root, mp)
            return mp
        if source is not None:
            raise BusyError(f"挂载点 {mp} 已挂载其他文件系统: {source}")

        ctx.executor.run(["mkdir", "-p", mp], label="创建挂载点")
        ctx.executor.run(["mount", "-t", "zfs", root, mp], label="挂载数据集")
        self.host.note_mounted(root, mp)
        logger.info("已挂载: %s -> %s", root, mp)
        return mp

    def mount_varlog(self, build: str) -> str:
        """挂载 varlog 数据集到 <mp>/var/log

        根数据集必须已挂载；/var/log 已有内容时先移到 var/log.old。
        """
        ctx = self.ctx
        root = ctx.root_dataset(build)
        varlog = ctx.varlog_dataset(build)
        mp = ctx.mount_point(build)
        target = ctx.varlog_mount_point(build)

        if not self.host.dataset_exists(root):
            raise NotFoundError(f"根数据集不存在: {root}")
        if not self.host.dataset_exists(varlog):
            raise NotFoundError(f"varlog 数据集不存在: {varlog}")
        if not self.host.is_mountpoint(mp):
            raise NotFoundError(f"根数据集未挂载在 {mp}，请先挂载根数据集")
        if self.host.is_mountpoint(target):
            logger.info("varlog 已挂载: %s", target)
            return target

        if self.host.has_content(target):
            old = f"{mp}/var/log.old"
            if self.host.has_content(old):
                ctx.executor.run(["rm", "-rf", old], label="删除旧日志目录")
                self.host.note_removed(old)
            ctx.executor.run(["mv", target, old], label="移动已有日志")
            self.host.note_moved(target, old)
            logger.info("已有 /var/log 内容已移至 %s", old)

        ctx.executor.run(["mkdir", "-p", target], label="创建挂载点")
        ctx.executor.run(["mount", "-t", "zfs", varlog, target], label="挂载 varlog")
        self.host.note_mounted(varlog, target)
        logger.info("已挂载: %s -> %s", varlog, target)
        return target

    def unmount_root_dataset(self, build: str) -> bool:
        """从构建区卸载（umount -R），返回是否实际执行了卸载"""
        ctx = self.ctx
        root = ctx.root_dataset(build)
        mp = ctx.mount_point(build)
        if not self.host.dataset_exists(root):
            logger.warning("数据集不存在，无需卸载: %s", root)
            return False
        source = self.host.mounted_source(mp)
        if source is None:
            logger.info("%s 未挂载在 %s", root, mp)
            return False
        if source != root:
            raise BusyError(f"{mp} 上挂载的是其他文件系统 ({source})，为安全起见不卸载")
        ctx.executor.run(["umount", "-R", mp], label="卸载")
        self.host.note_unmounted(mp)
        logger.info("已卸载: %s", mp)
        return True

    def destroy(
        self, dataset: str, *, recursive: bool = True, force: bool = False,
        container: str | None = None, mount_point: str | None = None,
    ) -> None:
        """销毁数据集（破坏性操作）

        数据集不存在抛 NotFoundError；容器运行中或卸载失败抛 BusyError；
        zfs destroy 失败时 BusyError 携带原始 stderr 及排查提示。
        """
        if not self.host.dataset_exists(dataset):
            raise NotFoundError(f"数据集不存在: {dataset}")
        if container and self.host.machine_running(container):
            raise BusyError(
                f"容器 {container} 正在使用数据集 {dataset}，请先停止容器"
            )
        if mount_point and self.host.is_mountpoint(mount_point):
            r = self.ctx.executor.execute(["umount", "-R", mount_point])
            if not r.success:
                raise BusyError(f"无法卸载 {mount_point}: {r.stderr.strip()}")
            self.host.note_unmounted(mount_point)

        argv = ["zfs", "destroy"]
        if force:
            argv.append("-f")
        if recursive:
            argv.append("-r")
        argv.append(dataset)
        r = self.ctx.executor.execute(argv)
        if not r.success:
            where = mount_point or dataset
            raise BusyError(
                f"销毁数据集失败: {dataset}\n{r.stderr.strip()}\n"
                f"通常是仍有进程打开了 {where} 下的文件，可用 'sudo lsof +D {where}' 排查"
            )
        self.host.note_dataset_destroyed(dataset)
        logger.info("已销毁数据集: %s", dataset)

    def destroy_build(self, build: str, force: bool = False) -> None:
        """销毁某个构建的根数据集（连同 varlog 与全部快照）"""
        validate_build_name(build)
        self.destroy(
            self.ctx.root_dataset(build), recursive=True, force=force,
            container=build, mount_point=self.ctx.mount_point(build),
        )

    def promote_to_bootfs(self, build: str) -> str:
        """把构建产物提升为下次启动的启动环境"""
        ctx = self.ctx
        root = ctx.root_dataset(build)
        if not self.host.dataset_exists(root):
            raise NotFoundError(f"根数据集不存在: {root}")

        self.unmount_root_dataset(build)
        ctx.executor.run(["zfs", "set", "canmount=noauto", root], label="设置 canmount")
        self.host.note_property_set(root, "canmount", "noauto")
        ctx.executor.run(["zfs", "set", "mountpoint=/", root], label="设置 mountpoint")
        self.host.note_property_set(root, "mountpoint", "/")
        ctx.executor.run(["zpool", "set", f"bootfs={root}", ctx.pool], label="设置 bootfs")
        self.host.note_pool_property_set(ctx.pool, "bootfs", root)
        logger.info("已提升为启动环境: %s（下次启动生效）", root)
        return root

    def list_root_datasets(self) -> list[RootDatasetInfo]:
        ctx = self.ctx
        if not self.host.dataset_exists(ctx.root_parent):
            return []
        bootfs = self.host.get_pool_property(ctx.pool, "bootfs")
        result = []
        for name in self.host.list_children(ctx.root_parent):
            result.append(self._info(name, bootfs))
        return result

    def dataset_info(self, build: str) -> RootDatasetInfo | None:
        root = self.ctx.root_dataset(build)
        if not self.host.dataset_exists(root):
            return None
        return self._info(root, self.host.get_pool_property(self.ctx.pool, "bootfs"))

    def _info(self, name: str, bootfs: str | None) -> RootDatasetInfo:
        build = name.rsplit("/", 1)[-1]
        mp = self.ctx.mount_point(build)
        return RootDatasetInfo(
            name=name,
            build=build,
            used=self.host.get_property(name, "used") or "-",
            mountpoint=self.host.get_property(name, "mountpoint") or "-",
            mounted=self.host.mounted_source(mp) == name,
            bootfs=bootfs == name,
            has_varlog=self.host.dataset_exists(f"{name}/varlog"),
            snapshots=self.host.list_snapshots(name),
        )

    # =====================================================================
    # 快照
    # =====================================================================

    def snapshot_name(self, dataset: str, label: str, timestamp: datetime | None = None) -> str:
        ts = (timestamp or datetime.now()).strftime(SNAPSHOT_TIMESTAMP_FORMAT)
        return f"{dataset}@{SNAPSHOT_PREFIX}-{label}-{ts}"

    def create_snapshot(
        self, dataset: str, label: str, timestamp: datetime | None = None,
    ) -> str:
        """创建带时间戳的递归快照（只追加），同名快照已存在则跳过；返回完整快照名"""
        if not label:
            raise ValidationError("快照标签不能为空")
        if not self.host.dataset_exists(dataset):
            raise NotFoundError(f"无法为不存在的数据集创建快照: {dataset}")
        name = self.snapshot_name(dataset, label, timestamp)
        if self.host.snapshot_exists(name):
            logger.warning("快照已存在: %s", name)
            return name
        self.ctx.executor.run(["zfs", "snapshot", "-r", name], label="创建快照")
        self.host.note_snapshot_created(name, recursive=True)
        logger.info("已创建快照: %s", name)
        return name

    def list_snapshots(self, dataset: str, pattern: str = "") -> list[str]:
        """数据集的快照，最新的在前；pattern 为子串过滤"""
        snaps = list(reversed(self.host.list_snapshots(dataset)))
        if pattern:
            snaps = [s for s in snaps if pattern in s]
        return snaps

    def stage_snapshots(self, dataset: str, label: str = "") -> list[str]:
        """构建阶段快照（可按阶段标签过滤），最新的在前"""
        prefix = f"{dataset}@{SNAPSHOT_PREFIX}-{label + '-' if label else ''}"
        return [s for s in self.list_snapshots(dataset) if s.startswith(prefix)]

    def find_stage_snapshot(self, dataset: str, label: str) -> str | None:
        snaps = self.stage_snapshots(dataset, label)
        return snaps[0] if snaps else None

    def rollback_snapshot(self, snapshot: str, force: bool = False) -> None:
        """回滚到快照（破坏性：比它新的状态全部丢失）；快照不存在抛 NotFoundError 且不做任何操作"""
        if "@" not in snapshot:
            raise ValidationError(f"快照名格式无效: {snapshot}（应为 dataset@name）")
        if not self.host.snapshot_exists(snapshot):
            raise NotFoundError(f"快照不存在: {snapshot}")
        argv = ["zfs", "rollback", "-r"]
        if force:
            argv.append("-f")
        argv.append(snapshot)
        self.ctx.executor.run(argv, label="回滚快照")
        self.host.note_rolled_back(snapshot)
        logger.info("已回滚到快照: %s", snapshot)

    def rollback_to_stage(self, build: str, label: str, force: bool = False) -> str:
        dataset = self.ctx.root_dataset(build)
        snap = self.find_stage_snapshot(dataset, label)
        if snap is None:
            raise NotFoundError(f"未找到阶段快照: {dataset}@{SNAPSHOT_PREFIX}-{label}-*")
        self.rollback_snapshot(snap, force=force)
        return snap

    def destroy_snapshot(self, snapshot: str) -> None:
        if not self.host.snapshot_exists(snapshot):
            logger.warning("快照不存在: %s", snapshot)
            return
        self.ctx.executor.run(["zfs", "destroy", "-r", snapshot], label="删除快照")
        self.host.note_snapshot_destroyed(snapshot, recursive=True)
        logger.info("已删除快照: %s", snapshot)

    def cleanup_snapshots(self, dataset: str, label: str = "", keep: int | None = None) -> list[str]:
        """保留最新的 keep 个阶段快照，删除其余，返回被删除的快照名"""
        if keep is None:
            keep = self.ctx.config.snapshot_retain
        if keep < 0:
            raise ValidationError(f"保留数量无效: {keep}")
        snaps = self.stage_snapshots(dataset, label)
        stale = snaps[keep:]
        for s in stale:
            self.destroy_snapshot(s)
        if stale:
            logger.info("已清理 %d 个旧快照 (%s)", len(stale), dataset)
        return stale
