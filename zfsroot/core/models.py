"""核心数据模型

构建状态枚举、状态记录、数据集 / 容器信息等数据类集中定义，
其他模块统一从此处导入。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Status(str, Enum):
    """构建状态

    前 8 项构成固定全序的阶段序列；FAILED 位于序列之外，任何阶段均可到达。
    """
    STARTED = "started"
    DATASETS_CREATED = "datasets-created"
    ROOT_MOUNTED = "root-mounted"
    OS_INSTALLED = "os-installed"
    VARLOG_MOUNTED = "varlog-mounted"
    CONTAINER_CREATED = "container-created"
    ANSIBLE_CONFIGURED = "ansible-configured"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> Status | None:
        """字符串转枚举，未知值返回 None"""
        try:
            return cls(value)
        except ValueError:
            return None


# 阶段顺序在此固定，不允许运行时修改
STAGE_ORDER: tuple[Status, ...] = (
    Status.STARTED,
    Status.DATASETS_CREATED,
    Status.ROOT_MOUNTED,
    Status.OS_INSTALLED,
    Status.VARLOG_MOUNTED,
    Status.CONTAINER_CREATED,
    Status.ANSIBLE_CONFIGURED,
    Status.COMPLETED,
)

SNAPSHOT_PREFIX = "build-stage"
SNAPSHOT_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

# 状态文件记录格式版本
RECORD_VERSION = 1


def snapshot_label(stage: Status) -> str:
    """阶段对应的快照标签，例如 datasets-created -> 1-datasets-created"""
    return f"{STAGE_ORDER.index(stage)}-{stage.value}"


@dataclass(frozen=True)
class StatusEntry:
    """单条状态记录（不可变）"""

    timestamp: datetime
    status: Status
    message: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "v": RECORD_VERSION,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "message": self.message,
        }


@dataclass
class HistoryRow:
    """带阶段耗时的历史行（供 status history 展示）"""

    entry: StatusEntry
    duration: float | None = None  # 秒，相对上一条记录


@dataclass
class RootDatasetInfo:
    """pool/ROOT 下单个根数据集的展示信息"""

    name: str
    build: str
    used: str = ""
    mountpoint: str = ""
    mounted: bool = False
    bootfs: bool = False
    has_varlog: bool = False
    snapshots: list[str] = field(default_factory=list)

    @property
    def flags(self) -> str:
        marks = []
        if self.bootfs:
            marks.append("BOOTFS")
        if self.mountpoint == "/":
            marks.append("ACTIVE_ROOT")
        elif self.mounted:
            marks.append("MOUNTED")
        marks.append("+varlog" if self.has_varlog else "-varlog")
        return " ".join(marks)


class ContainerState(str, Enum):
    """容器状态"""
    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING = "running"
