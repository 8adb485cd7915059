"""构建编排器 - 驱动阶段状态机直到 completed

职责：
- 任何副作用之前完成全部输入校验
- 持有构建级建议锁，挂接持久化构建日志
- 循环：读取状态 → 计算下一阶段 → 准入 → 执行阶段体 → 记录状态 → 快照
- 阶段失败：执行回滚栈（快速失败）与清理栈（尽力而为），标记 failed
- dry-run：使用内存虚拟状态，阶段失败只记录日志并继续推演
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from zfsroot.core.exceptions import (
    ConfigError,
    InternalError,
    RollbackError,
    StageOrderError,
    ZfsRootError,
)
from zfsroot.core.lock import build_lock
from zfsroot.core.models import Status
from zfsroot.core.recovery import CleanupStack, RollbackStack
from zfsroot.core.stages import require_admission, resume_from
from zfsroot.core.status import MemoryStatusStore, StatusStore
from zfsroot.core.validation import (
    validate_architecture,
    validate_build_name,
    validate_distribution,
    validate_hostname,
    validate_profile,
)
from zfsroot.services.container import ServiceContainer
from zfsroot.services.orchestrator.models import BuildPlan, BuildReport, StageRecord
from zfsroot.services.orchestrator.steps import STAGE_DESCRIPTIONS, BuildSteps
from zfsroot.utils.logger import attach_build_log, detach_build_log, get_build_logger

logger = logging.getLogger(__name__)
build_log = get_build_logger()


class BuildOrchestrator:
    """阶段式构建编排器（可重入：崩溃后再次调用即从下一阶段继续）"""

    def __init__(self, container: ServiceContainer | None = None) -> None:
        self.c = container or ServiceContainer()

    @property
    def dry_run(self) -> bool:
        return self.c.context.dry_run

    # ---- 准备 ----

    def prepare(self, plan: BuildPlan) -> BuildPlan:
        """补全默认值并校验全部输入（不产生任何副作用）"""
        cfg = self.c.config
        plan.distribution = plan.distribution or cfg.distribution
        plan.arch = plan.arch or cfg.arch
        plan.profile = plan.profile or cfg.profile
        if plan.snapshots is None:
            plan.snapshots = cfg.snapshots

        validate_build_name(plan.build)
        validate_build_name(plan.container_name, context="容器名")
        validate_hostname(plan.hostname)
        validate_distribution(plan.distribution)
        validate_architecture(plan.arch)
        validate_profile(plan.profile)

        host_vars = Path(cfg.host_vars_dir) / f"{plan.hostname}.yml"
        if not host_vars.is_file():
            raise ConfigError(
                f"主机变量文件不存在: {host_vars}"
                f"（可从示例复制: cp config/host_vars/ubuntu-minimal.yml {host_vars}）"
            )
        return plan

    def _store(self, build: str) -> StatusStore:
        if self.dry_run:
            # dry-run 从真实历史出发推演，但不写盘
            return MemoryStatusStore({build: self.c.status.get_history(build)})
        return self.c.status

    # ---- 执行 ----

    def run(self, plan: BuildPlan) -> BuildReport:
        """执行构建，直到 completed 或首个失败"""
        plan = self.prepare(plan)
        release = self.c.resolver.resolve(plan.distribution, plan.version, plan.codename)
        report = BuildReport(plan=plan, release=release, dry_run=self.dry_run)

        files = self.c.status
        store = self._store(plan.build)
        lock_path = None if self.dry_run else files.lock_file(plan.build)

        with build_lock(lock_path):
            handler = None if self.dry_run else attach_build_log(files.log_file(plan.build))
            try:
                build_log.info(
                    "Build initiated: %s %s (%s) -> hostname '%s' on pool '%s'%s",
                    release.distribution, release.version, plan.arch, plan.hostname,
                    self.c.context.pool, " [DRY RUN]" if self.dry_run else "",
                )
                with CleanupStack(dry_run=self.dry_run) as cleanup:
                    rollback = RollbackStack(dry_run=self.dry_run)
                    steps = BuildSteps(self.c, cleanup, rollback)
                    self._loop(plan, report, store, steps)
            finally:
                detach_build_log(handler)
        return report

    def _loop(
        self, plan: BuildPlan, report: BuildReport,
        store: StatusStore, steps: BuildSteps,
    ) -> None:
        build = plan.build
        current = store.get_status(build)
        report.initial_status = current

        if current is Status.FAILED and not plan.force_restart:
            raise StageOrderError(
                f"构建 {build} 处于 failed 状态，使用 --force-restart 重新开始，"
                f"或先执行 'zfsroot status clear {build}'"
            )
        if current is None:
            logger.info("新构建: %s", build)
        elif plan.force_restart:
            logger.warning("force restart: 构建 %s 从头开始（当前状态: %s）", build, current)
        else:
            logger.info("当前构建状态: %s，从此处继续", current)

        force = plan.force_restart
        while True:
            current = store.get_status(build)
            stage = resume_from(current, force)
            if stage is None:
                break
            require_admission(stage, current, force)
            force = False
            self._run_stage(plan, report, store, steps, stage)

        report.final_status = store.get_status(build)
        if report.final_status is Status.COMPLETED:
            logger.info("构建 %s 已完成，根文件系统位于 %s", build, self.c.context.mount_point(build))

    def _run_stage(
        self, plan: BuildPlan, report: BuildReport,
        store: StatusStore, steps: BuildSteps, stage: Status,
    ) -> None:
        build = plan.build
        desc = STAGE_DESCRIPTIONS[stage]
        build_log.info("Starting stage %s: %s", stage, desc)
        t0 = time.monotonic()
        record = StageRecord(stage=stage)

        try:
            steps.run(stage, plan, report)
        except Exception as e:
            if self.dry_run and isinstance(e, ZfsRootError):
                logger.warning("[DRY RUN] 阶段 %s 在真实环境中会失败: %s（继续模拟）", stage, e)
                record.simulated = True
            else:
                self._fail(plan, report, store, steps, stage, e)
                raise

        store.set_status(build, stage, desc)
        # 阶段已记录完成，之后的失败不再回滚该阶段
        steps.rollback.clear()
        if plan.snapshots and stage is not Status.STARTED:
            try:
                record.snapshot = steps.snapshot(plan, stage)
            except ZfsRootError as e:
                if not self.dry_run:
                    self._fail(plan, report, store, steps, stage, e)
                    raise
                logger.warning("[DRY RUN] 快照在真实环境中会失败: %s", e)

        after = store.get_status(build)
        if after is not stage:
            raise InternalError(
                f"阶段 {stage} 执行后状态未更新（当前: {after}），终止以避免死循环"
            )

        record.duration = time.monotonic() - t0
        report.stages.append(record)
        build_log.info("Completed stage %s (%.1fs)", stage, record.duration)

    def _fail(
        self, plan: BuildPlan, report: BuildReport, store: StatusStore,
        steps: BuildSteps, stage: Status, error: Exception,
    ) -> None:
        """阶段失败：回滚 → 清理 → 标记 failed；回滚失败时以 RollbackError 上报"""
        build_log.error("Stage %s failed: %s", stage, error)
        rollback_error: RollbackError | None = None
        try:
            steps.rollback.run()
        except RollbackError as e:
            rollback_error = e

        failures = steps.cleanup.run()
        for desc, err in failures:
            logger.warning("清理未完成，需要人工处理: %s (%s)", desc, err)

        store.set_status(plan.build, Status.FAILED, f"{stage}: {error}")
        report.final_status = Status.FAILED
        report.error = str(error)
        logger.error(
            "构建 %s 在阶段 %s 失败。修复问题后使用 --force-restart 重新构建，"
            "或用 'zfsroot status clear %s' 清除状态", plan.build, stage, plan.build,
        )
        if rollback_error is not None:
            raise rollback_error from error
