"""外部命令依赖检查"""

from __future__ import annotations

import logging
import shutil

from zfsroot.core.exceptions import DependencyError

logger = logging.getLogger(__name__)

INSTALL_HINTS: dict[str, str] = {
    "zfs": "sudo apt install zfsutils-linux",
    "zpool": "sudo apt install zfsutils-linux",
    "systemd-nspawn": "sudo apt install systemd-container",
    "machinectl": "sudo apt install systemd-container",
    "docker": "sudo apt install docker.io",
    "mmdebstrap": "sudo apt install mmdebstrap",
    "findmnt": "sudo apt install util-linux",
    "mount": "sudo apt install mount",
}

# 各操作所需命令
ZFS_COMMANDS = ("zfs", "zpool", "mount", "findmnt")
CONTAINER_COMMANDS = ("systemd-nspawn", "machinectl")
BUILD_COMMANDS = ZFS_COMMANDS + CONTAINER_COMMANDS + ("docker",)


def require_command(command: str) -> str:
    """确认命令在 PATH 中，返回其完整路径"""
    path = shutil.which(command)
    if path is None:
        raise DependencyError(command, INSTALL_HINTS.get(command, ""))
    return path


def require_commands(commands: tuple[str, ...] | list[str]) -> None:
    missing = [c for c in commands if shutil.which(c) is None]
    if not missing:
        return
    for c in missing:
        logger.error("缺少命令: %s %s", c, INSTALL_HINTS.get(c, ""))
    first = missing[0]
    raise DependencyError(", ".join(missing), INSTALL_HINTS.get(first, ""))
