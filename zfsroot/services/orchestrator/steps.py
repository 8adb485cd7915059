"""编排器步骤实现 - 每个构建阶段一个方法

阶段顺序：
0. started            - 记录构建开始
1. datasets-created   - 创建根数据集与 varlog 数据集
2. root-mounted       - 挂载根数据集到构建区
3. os-installed       - 安装基础系统（先回滚到阶段 1 快照）
4. varlog-mounted     - 挂载 varlog 数据集
5. container-created  - 创建并启动 nspawn 容器
6. ansible-configured - 在容器内执行 Ansible
7. completed          - 销毁容器，收尾
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from zfsroot.core.exceptions import ExternalToolError, InternalError
from zfsroot.core.models import STAGE_ORDER, Status, snapshot_label

if TYPE_CHECKING:
    from zfsroot.core.recovery import CleanupStack, Deferred, RollbackStack
    from zfsroot.services.container import ServiceContainer
    from zfsroot.services.orchestrator.models import BuildPlan, BuildReport

logger = logging.getLogger(__name__)

STAGE_DESCRIPTIONS: dict[Status, str] = {
    Status.STARTED: "记录构建开始",
    Status.DATASETS_CREATED: "创建 ZFS 数据集",
    Status.ROOT_MOUNTED: "挂载根数据集",
    Status.OS_INSTALLED: "安装基础系统",
    Status.VARLOG_MOUNTED: "挂载 varlog 数据集",
    Status.CONTAINER_CREATED: "创建配置用容器",
    Status.ANSIBLE_CONFIGURED: "Ansible 配置系统",
    Status.COMPLETED: "收尾并清理资源",
}


class BuildSteps:
    """构建阶段集合"""

    def __init__(
        self, container: ServiceContainer,
        cleanup: CleanupStack, rollback: RollbackStack,
    ) -> None:
        self.c = container
        self.cleanup = cleanup
        self.rollback = rollback
        self._container_entry: Deferred | None = None
        self._handlers: dict[Status, Callable[[BuildPlan, BuildReport], None]] = {
            Status.STARTED: self.started,
            Status.DATASETS_CREATED: self.datasets_created,
            Status.ROOT_MOUNTED: self.root_mounted,
            Status.OS_INSTALLED: self.os_installed,
            Status.VARLOG_MOUNTED: self.varlog_mounted,
            Status.CONTAINER_CREATED: self.container_created,
            Status.ANSIBLE_CONFIGURED: self.ansible_configured,
            Status.COMPLETED: self.completed,
        }
        missing = set(STAGE_ORDER) - set(self._handlers)
        if missing:
            raise RuntimeError(f"阶段缺少实现: {sorted(s.value for s in missing)}")

    def run(self, stage: Status, plan: BuildPlan, report: BuildReport) -> None:
        self._handlers[stage](plan, report)

    # ---- 阶段体 ----

    def started(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段0: 重新开始时先清理上次残留的容器"""
        if plan.force_restart:
            self.c.containers.cleanup_for_build(plan.container_name)
        logger.info(
            "[Stage 0] 构建 %s: %s (%s) -> 主机 %s，存储池 %s",
            plan.build, report.release, plan.arch, plan.hostname, self.c.context.pool,
        )

    def datasets_created(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段1: 创建数据集；force restart 时销毁重建"""
        root = self.c.zfs.create_root_dataset(plan.build, cleanup=plan.force_restart)
        logger.info("[Stage 1] 数据集已创建: %s", root)

    def root_mounted(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段2: 挂载根数据集"""
        mp = self.c.zfs.mount_root_dataset(plan.build)
        logger.info("[Stage 2] 根数据集已挂载: %s", mp)

    def os_installed(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段3: 回滚到阶段1快照得到干净的文件系统，再安装基础系统

        安装失败时回滚栈把数据集恢复到同一快照。
        """
        zfs = self.c.zfs
        ctx = self.c.context
        root = ctx.root_dataset(plan.build)
        snap = zfs.find_stage_snapshot(root, snapshot_label(Status.DATASETS_CREATED))
        if snap:
            logger.info("[Stage 3] 回滚到安装前的干净状态: %s", snap)
            zfs.rollback_snapshot(snap, force=True)
            self.rollback.push(
                f"回滚 {root} 到 {snap}",
                lambda: zfs.rollback_snapshot(snap, force=True),
            )
        else:
            logger.debug("未找到阶段1快照，跳过安装前回滚")

        if report.release is None:
            raise InternalError("发行版版本尚未解析")
        packages = self.c.packages.get_packages(plan.distribution, plan.profile, plan.arch)
        self.c.installer.install(ctx.mount_point(plan.build), report.release, plan.arch, packages)
        logger.info("[Stage 3] 基础系统已安装: %s", report.release)

    def varlog_mounted(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段4: 挂载 varlog 数据集"""
        target = self.c.zfs.mount_varlog(plan.build)
        logger.info("[Stage 4] varlog 已挂载: %s", target)

    def container_created(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段5: 创建并启动容器，容器在收尾前一直保持运行

        清理条目先于创建入栈：启动成功后安装软件包失败也要移除容器。
        """
        name = plan.container_name
        self._track_container(name)
        self.c.containers.create(
            plan.build, name, plan.hostname,
            install_packages=self.c.config.container_packages,
        )
        logger.info("[Stage 5] 容器已就绪: %s", name)

    def ansible_configured(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段6: 确保容器运行，执行 Ansible"""
        name = plan.container_name
        containers = self.c.containers
        if not containers.is_running(name):
            logger.info("容器 %s 未运行，重新启动", name)
            containers.start(plan.build, name, plan.hostname)
        self._track_container(name)

        mp = self.c.context.mount_point(plan.build)
        rc = self.c.configurer.run(mp, name, tags=plan.tags, limit=plan.ansible_limit)
        if rc != 0:
            raise ExternalToolError(
                f"Ansible 配置失败 (rc={rc})，tags={plan.tags or '-'} limit={plan.ansible_limit}",
                returncode=rc,
            )
        logger.info("[Stage 6] Ansible 配置完成")

    def completed(self, plan: BuildPlan, report: BuildReport) -> None:
        """阶段7: 销毁容器（失败只告警）"""
        name = plan.container_name
        self.c.containers.cleanup_for_build(name)
        if self._container_entry is not None:
            self.cleanup.remove(self._container_entry)
            self._container_entry = None
        logger.info(
            "[Stage 7] 构建完成，根文件系统位于 %s",
            self.c.context.mount_point(plan.build),
        )

    # ---- 快照 ----

    def snapshot(self, plan: BuildPlan, stage: Status) -> str:
        """阶段完成后的恢复点，并按保留数量清理同阶段旧快照"""
        zfs = self.c.zfs
        root = self.c.context.root_dataset(plan.build)
        label = snapshot_label(stage)
        name = zfs.create_snapshot(root, label)
        zfs.cleanup_snapshots(root, label, keep=self.c.config.snapshot_retain)
        return name

    def _track_container(self, name: str) -> None:
        if self._container_entry is None:
            containers = self.c.containers
            self._container_entry = self.cleanup.push(
                f"停止并移除容器 {name}",
                lambda: containers.cleanup_for_build(name),
            )
