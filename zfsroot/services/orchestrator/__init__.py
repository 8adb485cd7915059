"""构建编排器模块

拆分说明：
- models.py: 数据模型（计划 / 阶段记录 / 报告）
- steps.py: 8 个阶段体实现
- orchestrator.py: 状态机驱动循环
"""

from zfsroot.services.orchestrator.models import BuildPlan, BuildReport, StageRecord
from zfsroot.services.orchestrator.orchestrator import BuildOrchestrator
from zfsroot.services.orchestrator.steps import BuildSteps

__all__ = [
    "BuildPlan",
    "BuildReport",
    "StageRecord",
    "BuildOrchestrator",
    "BuildSteps",
]
