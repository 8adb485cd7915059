"""阶段状态机

给定当前构建状态：
  - next_stage:  线性后继（completed / failed / 未知状态没有后继）
  - should_run:  准入判断 —— 只允许严格的下一个阶段；无状态时只允许首阶段；
                 force_restart 时无条件放行
  - resume_from: 编排器续跑的起点

保证阶段按顺序各执行一次、不静默跳过，同时允许崩溃后安全重入。
"""

from __future__ import annotations

import logging

from zfsroot.core.exceptions import StageOrderError
from zfsroot.core.models import STAGE_ORDER, Status

logger = logging.getLogger(__name__)

FIRST_STAGE = STAGE_ORDER[0]


def next_stage(current: Status | None) -> Status | None:
    """线性后继；current 为 completed、failed 或不在序列中时返回 None"""
    if current is None or current not in STAGE_ORDER:
        return None
    idx = STAGE_ORDER.index(current)
    if idx + 1 >= len(STAGE_ORDER):
        return None
    return STAGE_ORDER[idx + 1]


def should_run(
    requested: Status, current: Status | None, force_restart: bool = False,
) -> bool:
    """判断 requested 阶段此时是否允许执行"""
    if force_restart:
        logger.debug("force restart: 阶段 %s 无条件放行", requested)
        return True
    if current is None:
        allowed = requested == FIRST_STAGE
        logger.debug("无历史状态，阶段 %s %s", requested, "可执行" if allowed else "不可执行")
        return allowed
    allowed = requested == next_stage(current)
    logger.debug("阶段 %s (当前: %s) %s", requested, current, "可执行" if allowed else "不可执行")
    return allowed


def require_admission(
    requested: Status, current: Status | None, force_restart: bool = False,
) -> None:
    """准入检查，不通过抛 StageOrderError"""
    if should_run(requested, current, force_restart):
        return
    expected = FIRST_STAGE if current is None else next_stage(current)
    hint = f"期望阶段: {expected}" if expected else "当前状态没有后继阶段"
    raise StageOrderError(
        f"阶段 {requested} 不允许执行（当前状态: {current or '无'}，{hint}）"
    )


def resume_from(current: Status | None, force_restart: bool = False) -> Status | None:
    """编排器应执行的下一个阶段

    - 无状态 / force_restart：从首阶段开始
    - failed 且未 force_restart：None（需要运维显式 --force-restart 或清除状态）
    - completed：None
    """
    if current is None or force_restart:
        return FIRST_STAGE
    return next_stage(current)


def stage_index(stage: Status) -> int:
    """阶段在序列中的位置（failed 返回 -1）"""
    return STAGE_ORDER.index(stage) if stage in STAGE_ORDER else -1
