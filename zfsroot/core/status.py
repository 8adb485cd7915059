"""构建状态存储 - 每个构建一个只追加的状态文件

文件 <status_dir>/<build>.status，每行一个 JSON 对象:
    {"v": 1, "timestamp": "...", "status": "os-installed", "message": "..."}

最后一行即当前状态；历史只追加、从不改写，既是审计记录，也是续跑的唯一依据。
兼容旧格式 "timestamp|status|message"。
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from zfsroot.core.exceptions import InvalidStatusError
from zfsroot.core.models import HistoryRow, Status, StatusEntry
from zfsroot.core.validation import validate_build_name

logger = logging.getLogger(__name__)

STATUS_FILE_SUFFIX = ".status"
BUILD_LOG_SUFFIX = ".log"
LOCK_FILE_SUFFIX = ".lock"


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(ts: datetime) -> datetime:
    # 旧记录不带时区，按本地时间解释
    return ts if ts.tzinfo is not None else ts.astimezone(timezone.utc)


def _coerce_status(status: Status | str) -> Status:
    if isinstance(status, Status):
        return status
    parsed = Status.parse(status)
    if parsed is None:
        valid = ", ".join(s.value for s in Status)
        raise InvalidStatusError(f"无效的构建状态: '{status}'，可选值: {valid}")
    return parsed


def parse_status_line(line: str) -> StatusEntry | None:
    """解析状态文件中的一行，无法解析返回 None"""
    line = line.strip()
    if not line:
        return None
    if line.startswith("{"):
        try:
            data = json.loads(line)
            status = Status.parse(str(data.get("status", "")))
            if status is None:
                return None
            return StatusEntry(
                timestamp=_aware(datetime.fromisoformat(data["timestamp"])),
                status=status,
                message=str(data.get("message", "") or ""),
            )
        except (json.JSONDecodeError, KeyError, ValueError, TypeError):
            return None
    # 旧格式: timestamp|status|message
    parts = line.split("|", 2)
    if len(parts) < 2:
        return None
    status = Status.parse(parts[1])
    if status is None:
        return None
    try:
        ts = datetime.fromisoformat(parts[0])
    except ValueError:
        return None
    return StatusEntry(timestamp=_aware(ts), status=status, message=parts[2] if len(parts) > 2 else "")


def with_durations(entries: list[StatusEntry]) -> list[HistoryRow]:
    """为每条记录附上与上一条记录的时间差"""
    rows: list[HistoryRow] = []
    prev: StatusEntry | None = None
    for e in entries:
        duration = None
        if prev is not None:
            duration = (e.timestamp - prev.timestamp).total_seconds()
        rows.append(HistoryRow(entry=e, duration=duration))
        prev = e
    return rows


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "--:--:--"
    total = int(seconds)
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"


class StatusStore(Protocol):
    """状态存储协议（文件存储 / dry-run 内存存储）"""

    def set_status(self, build: str, status: Status | str, message: str = "") -> StatusEntry: ...

    def get_status(self, build: str) -> Status | None: ...

    def get_history(self, build: str) -> list[StatusEntry]: ...


class BuildStatusStore:
    """基于文件的构建状态存储"""

    def __init__(
        self, status_dir: str = "",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not status_dir:
            from zfsroot.core.config import get_config
            status_dir = get_config().status_dir
        self.status_dir = Path(status_dir)
        self._clock = clock or _now

    # ---- 路径 ----

    def status_file(self, build: str) -> Path:
        return self.status_dir / f"{build}{STATUS_FILE_SUFFIX}"

    def log_file(self, build: str) -> Path:
        return self.status_dir / f"{build}{BUILD_LOG_SUFFIX}"

    def lock_file(self, build: str) -> Path:
        return self.status_dir / f"{build}{LOCK_FILE_SUFFIX}"

    # ---- 读写 ----

    def set_status(self, build: str, status: Status | str, message: str = "") -> StatusEntry:
        """追加一条状态记录"""
        validate_build_name(build)
        st = _coerce_status(status)

        ts = self._clock()
        last = self.last_entry(build)
        if last is not None and ts < last.timestamp:
            # 时钟回拨时保持单调不减
            ts = last.timestamp

        entry = StatusEntry(timestamp=ts, status=st, message=message.replace("\n", " "))
        path = self.status_file(build)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
            f.flush()
            os.fsync(f.fileno())
        logger.debug("构建状态已更新: %s = %s", build, st)
        return entry

    def get_history(self, build: str) -> list[StatusEntry]:
        path = self.status_file(build)
        if not path.exists():
            return []
        entries: list[StatusEntry] = []
        with open(path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                if not line.strip():
                    continue
                entry = parse_status_line(line)
                if entry is None:
                    logger.warning("忽略无法解析的状态记录: %s:%d", path, lineno)
                    continue
                entries.append(entry)
        return entries

    def last_entry(self, build: str) -> StatusEntry | None:
        history = self.get_history(build)
        return history[-1] if history else None

    def get_status(self, build: str) -> Status | None:
        """当前状态；没有状态文件返回 None（合法的初始状态，不是错误）"""
        entry = self.last_entry(build)
        return entry.status if entry else None

    def history_with_durations(self, build: str) -> list[HistoryRow]:
        return with_durations(self.get_history(build))

    def list_builds(self) -> list[str]:
        if not self.status_dir.is_dir():
            return []
        return sorted(
            p.name[: -len(STATUS_FILE_SUFFIX)]
            for p in self.status_dir.glob(f"*{STATUS_FILE_SUFFIX}")
        )

    def clear(self, build: str, force: bool = False) -> list[str]:
        """删除状态文件与构建日志；force 时一并删除所有 <build>.* 残留文件"""
        validate_build_name(build)
        targets = [self.status_file(build), self.log_file(build)]
        if force and self.status_dir.is_dir():
            targets.extend(
                p for p in self.status_dir.glob(f"{build}.*")
                if p.is_file() and p != self.lock_file(build)
            )
        removed: list[str] = []
        for p in dict.fromkeys(targets):
            if p.exists():
                p.unlink()
                removed.append(str(p))
        logger.info("已清除构建状态: %s (%d 个文件)", build, len(removed))
        return removed


class MemoryStatusStore:
    """内存状态存储，用作 dry-run 的虚拟状态，不落盘

    可用已有历史做种子，以便 dry-run 从真实的当前状态开始推演。
    """

    def __init__(
        self, seed: dict[str, list[StatusEntry]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._entries: dict[str, list[StatusEntry]] = {
            k: list(v) for k, v in (seed or {}).items()
        }
        self._clock = clock or _now

    def set_status(self, build: str, status: Status | str, message: str = "") -> StatusEntry:
        validate_build_name(build)
        st = _coerce_status(status)
        history = self._entries.setdefault(build, [])
        ts = self._clock()
        if history and ts < history[-1].timestamp:
            ts = history[-1].timestamp
        entry = StatusEntry(timestamp=ts, status=st, message=message)
        history.append(entry)
        logger.info("[DRY RUN] 虚拟构建状态: %s = %s", build, st)
        return entry

    def get_status(self, build: str) -> Status | None:
        history = self._entries.get(build)
        return history[-1].status if history else None

    def get_history(self, build: str) -> list[StatusEntry]:
        return list(self._entries.get(build, []))
