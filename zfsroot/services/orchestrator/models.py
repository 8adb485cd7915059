"""编排器数据模型

数据类：
- BuildPlan: 构建计划
- StageRecord: 单个阶段的执行记录
- BuildReport: 构建报告
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from zfsroot.core.models import Status

if TYPE_CHECKING:
    from zfsroot.services.collaborators import DistroRelease


@dataclass
class BuildPlan:
    """构建计划 — 一次 build 调用的全部输入，空字段取配置默认值"""

    build: str
    hostname: str

    distribution: str = ""
    version: str = ""
    codename: str = ""
    arch: str = ""
    profile: str = ""

    tags: str = ""
    limit: str = ""

    snapshots: bool | None = None
    force_restart: bool = False
    container: str = ""

    @property
    def container_name(self) -> str:
        return self.container or self.build

    @property
    def ansible_limit(self) -> str:
        return self.limit or self.hostname


@dataclass
class StageRecord:
    """阶段执行记录"""

    stage: Status
    duration: float = 0.0
    snapshot: str = ""
    simulated: bool = False  # dry-run 下阶段体失败、仅推进虚拟状态


@dataclass
class BuildReport:
    """构建报告"""

    plan: BuildPlan
    release: DistroRelease | None = None
    dry_run: bool = False
    initial_status: Status | None = None
    final_status: Status | None = None
    stages: list[StageRecord] = field(default_factory=list)
    error: str = ""

    @property
    def success(self) -> bool:
        return self.final_status is Status.COMPLETED

    @property
    def executed(self) -> list[Status]:
        return [r.stage for r in self.stages]
