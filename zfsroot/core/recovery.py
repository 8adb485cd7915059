"""恢复栈 - 清理栈与回滚栈

两者都是后进先出的 Deferred 列表，区别在失败语义:

  CleanupStack  尽力而为: 单条失败只记录日志，继续执行其余条目，
                清理过程绝不抛异常，以免掩盖原始错误
  RollbackStack 快速失败: 首条失败即停止并抛 RollbackError，
                剩余条目保留给运维人工处理

两个栈都只存在于内存，从不落盘。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from zfsroot.core.exceptions import RollbackError, ZfsRootError

logger = logging.getLogger(__name__)


@dataclass
class Deferred:
    """一条延迟执行的恢复动作"""

    description: str
    action: Callable[[], object]

    def __call__(self) -> object:
        return self.action()


class _DeferredStack:
    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run
        self._entries: list[Deferred] = []

    def push(self, description: str, action: Callable[[], object]) -> Deferred:
        entry = Deferred(description, action)
        self._entries.append(entry)
        logger.debug("%s 入栈: %s", type(self).__name__, description)
        return entry

    def remove(self, entry: Deferred) -> bool:
        """移除一条尚未执行的条目（资源已被正常释放）"""
        for i in range(len(self._entries) - 1, -1, -1):
            if self._entries[i] is entry:
                del self._entries[i]
                return True
        return False

    def clear(self) -> None:
        self._entries.clear()

    def descriptions(self) -> list[str]:
        """条目描述，按执行顺序（最新的在前）"""
        return [e.description for e in reversed(self._entries)]

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


class CleanupStack(_DeferredStack):
    """尽力而为的清理栈，可作为上下文管理器在退出时自动展开"""

    def run(self) -> list[tuple[str, Exception]]:
        """按 LIFO 执行全部条目并清空栈，返回失败列表"""
        if not self._entries:
            return []
        if self.dry_run:
            for desc in self.descriptions():
                logger.info("[DRY RUN] Would clean up: %s", desc)
            self._entries.clear()
            return []

        logger.info("执行清理栈 (%d 项)", len(self._entries))
        failures: list[tuple[str, Exception]] = []
        while self._entries:
            entry = self._entries.pop()
            try:
                entry()
                logger.debug("清理完成: %s", entry.description)
            except Exception as e:  # noqa: BLE001
                logger.warning("清理失败（继续）: %s: %s", entry.description, e)
                failures.append((entry.description, e))
        return failures

    def __enter__(self) -> CleanupStack:
        return self

    def __exit__(self, *exc: object) -> None:
        self.run()


class RollbackStack(_DeferredStack):
    """快速失败的回滚栈"""

    def run(self) -> int:
        """按 LIFO 执行条目，返回成功执行的条数；遇到首个失败抛 RollbackError"""
        if not self._entries:
            return 0
        if self.dry_run:
            for desc in self.descriptions():
                logger.info("[DRY RUN] Would roll back: %s", desc)
            self._entries.clear()
            return 0

        logger.info("执行回滚栈 (%d 项)", len(self._entries))
        done = 0
        while self._entries:
            entry = self._entries[-1]
            try:
                entry()
            except Exception as e:
                remaining = self.descriptions()
                logger.error("回滚失败，停止: %s: %s", entry.description, e)
                raise RollbackError(
                    f"回滚失败: {entry.description}: {e}（剩余 {len(remaining)} 项需人工处理）",
                    remaining=remaining,
                ) from e
            self._entries.pop()
            done += 1
            logger.info("已回滚: %s", entry.description)
        return done


# =========================================================================
# 失败后的处理建议
# =========================================================================

_HINTS: dict[str, list[str]] = {
    "DEPENDENCY_ERROR": [
        "更新软件包索引: sudo apt update",
        "按上面的安装提示补齐缺失命令",
    ],
    "BUSY": [
        "查找占用挂载点的进程: lsof +D <挂载点>",
        "确认没有容器仍在运行: machinectl list",
    ],
    "NOT_FOUND": [
        "检查存储池状态: sudo zpool status",
        "确认 ZFS 模块已加载: sudo modprobe zfs",
    ],
    "ALREADY_EXISTS": [
        "使用 --force-restart 重建，或 'zfsroot dataset destroy' 手动删除",
    ],
    "LOCKED": [
        "同一构建的另一个进程仍在运行，等待其结束后重试",
    ],
    "STAGE_ORDER": [
        "使用 --force-restart 从头开始，或 'zfsroot status clear <build>' 清除状态",
    ],
    "ROLLBACK_FAILED": [
        "回滚未完成，数据集状态不确定，按剩余条目人工处理",
        "检查快照: zfsroot snapshot list <build>",
    ],
    "EXTERNAL_TOOL": [
        "检查上面的命令输出与 stderr",
        "Docker 相关失败: sudo systemctl status docker",
        "网络相关失败: 检查网络连接与代理设置后重试",
    ],
}

_GENERAL_HINTS = [
    "查看状态目录中的构建日志获取完整记录",
    "加 --debug 重新运行以打印执行的命令",
]


def recovery_hints(error: ZfsRootError) -> list[str]:
    """按错误类型给出运维处理建议"""
    return _HINTS.get(error.code, []) + _GENERAL_HINTS
