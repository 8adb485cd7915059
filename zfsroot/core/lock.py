"""构建级建议锁

同一构建名在同一时刻只允许一个编排进程操作，
防止两个进程同时追加状态文件、同时创建数据集或容器。
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from zfsroot.core.exceptions import LockError

logger = logging.getLogger(__name__)


class BuildLock:
    """基于 fcntl.flock 的非阻塞排他锁，进程退出时由内核自动释放"""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._fh: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        if self._fh is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")  # noqa: SIM115
        try:
            fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            fh.close()
            raise LockError(f"另一个进程正在操作该构建（锁文件: {self.path}）") from e
        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        self._fh = fh
        logger.debug("已获取构建锁: %s", self.path)

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh, fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
        logger.debug("已释放构建锁: %s", self.path)

    def __enter__(self) -> BuildLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


@contextmanager
def build_lock(path: str | Path | None) -> Iterator[BuildLock | None]:
    """path 为 None 时不加锁（dry-run）"""
    if path is None:
        yield None
        return
    with BuildLock(path) as lock:
        yield lock
