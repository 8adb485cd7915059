"""systemd-nspawn 容器驱动

容器以构建的挂载点为根目录运行，名称默认与构建名相同。
状态: absent → stopped → running

创建 / 启动失败对阶段是致命的；停止 / 销毁在清理路径上只记录日志，
cleanup_for_build 永不抛异常，避免掩盖原始错误。
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from zfsroot.core.exceptions import (
    ExternalToolError,
    InvalidRootfsError,
    NotRunningError,
    ZfsRootError,
)
from zfsroot.core.models import ContainerState
from zfsroot.services.context import BuildContext
from zfsroot.utils.shell import TIMEOUT_RETURNCODE, format_argv

logger = logging.getLogger(__name__)

SYSTEMD_POLL_INTERVAL = 2
NETWORK_UNITS = ("systemd-networkd", "systemd-resolved")


def nspawn_argv(mount_point: str, name: str, hostname: str) -> list[str]:
    """后台启动容器的完整命令"""
    return [
        "systemd-nspawn",
        f"--directory={mount_point}",
        f"--machine={name}",
        "--boot",
        "--network-veth",
        "--resolv-conf=copy-host",
        "--timezone=auto",
        "--console=passive",
        "--link-journal=try-guest",
        f"--hostname={hostname}",
        "--capability=all",
        "--property=DevicePolicy=auto",
    ]


class ContainerDriver:
    """容器生命周期管理"""

    def __init__(
        self, ctx: BuildContext,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ctx = ctx
        self._sleep = sleep

    # ---- 查询 ----

    def is_running(self, name: str) -> bool:
        return self.ctx.host.machine_running(name)

    def status(self, name: str) -> ContainerState:
        if self.ctx.host.machine_running(name):
            return ContainerState.RUNNING
        if self.ctx.host.machine_image_exists(name):
            return ContainerState.STOPPED
        return ContainerState.ABSENT

    def list_running(self) -> list[str]:
        return self.ctx.host.running_machines()

    def _require_running(self, name: str) -> None:
        if not self.is_running(name):
            raise NotRunningError(f"容器未运行: {name}")

    def _require_rootfs(self, mount_point: str) -> None:
        if not self.ctx.host.looks_like_rootfs(mount_point):
            raise InvalidRootfsError(
                f"{mount_point} 不存在或看起来不是根文件系统（缺少 etc/usr/bin/sbin）"
            )

    # ---- 生命周期 ----

    def create(
        self, build: str, name: str = "", hostname: str = "",
        install_packages: list[str] | None = None,
    ) -> bool:
        """校验根文件系统 → 复制 hostid → 启动 → 启用网络 → 安装软件包

        已在运行时直接返回 False（幂等）。
        """
        name = name or build
        hostname = hostname or build
        mp = self.ctx.mount_point(build)
        self._require_rootfs(mp)
        if self.is_running(name):
            logger.info("容器 %s 已在运行，跳过创建", name)
            return False

        logger.info("创建容器 %s（构建 %s）", name, build)
        self.ctx.executor.run(["cp", "/etc/hostid", f"{mp}/etc/hostid"], label="复制 hostid")
        self.start(build, name, hostname)

        units = " ".join(NETWORK_UNITS)
        r = self._script(name, f"systemctl enable {units}")
        if not r:
            logger.warning("容器 %s 启用网络服务失败（继续）", name)

        if install_packages:
            self.install_packages(name, install_packages)
        return True

    def start(self, build: str, name: str = "", hostname: str = "") -> bool:
        """后台启动容器并等待 machinectl 注册与 systemd 就绪；已运行返回 False"""
        name = name or build
        hostname = hostname or build
        mp = self.ctx.mount_point(build)
        self._require_rootfs(mp)
        if self.is_running(name):
            logger.info("容器 %s 已在运行", name)
            return False

        argv = nspawn_argv(mp, name, hostname)
        proc = self.ctx.executor.spawn(argv)
        self.ctx.host.note_machine_started(name)
        if self.ctx.dry_run:
            return True

        cfg = self.ctx.config
        if not self._wait_registered(name, cfg.container_ready_timeout):
            if proc is not None and proc.poll() is None:
                proc.terminate()
            raise ExternalToolError(
                f"容器 {name} 在 {cfg.container_ready_timeout}s 内未完成注册: {format_argv(argv)}",
                argv=argv, returncode=TIMEOUT_RETURNCODE,
            )
        if not self._wait_systemd(name, cfg.container_systemd_timeout):
            logger.warning("容器 %s 的 systemd 在 %ds 内可能未完全就绪", name, cfg.container_systemd_timeout)

        for unit in NETWORK_UNITS:
            if not self._script(name, f"systemctl start {unit}"):
                logger.warning("容器 %s 启动 %s 失败（继续）", name, unit)
        logger.info("容器已启动: %s", name)
        return True

    def _wait_registered(self, name: str, timeout: int) -> bool:
        for _ in range(max(timeout, 1)):
            if self.ctx.host.machine_running(name):
                return True
            self._sleep(1)
        return self.ctx.host.machine_running(name)

    def _wait_systemd(self, name: str, timeout: int) -> bool:
        argv = ["systemd-run", f"--machine={name}", "--wait", "/bin/true"]
        for _ in range(max(timeout // SYSTEMD_POLL_INTERVAL, 1)):
            if self.ctx.executor.execute(argv).success:
                return True
            self._sleep(SYSTEMD_POLL_INTERVAL)
        return False

    def stop(self, name: str, force: bool = False, timeout: int | None = None) -> bool:
        """优雅关机，超时后强制终止；未运行返回 False"""
        if not self.is_running(name):
            logger.info("容器 %s 未运行", name)
            return False
        if timeout is None:
            timeout = self.ctx.config.container_stop_timeout

        ex = self.ctx.executor
        if not force:
            r = ex.execute(["machinectl", "poweroff", name])
            if r.success:
                self.ctx.host.note_machine_stopped(name)
                for _ in range(timeout):
                    if not self.is_running(name):
                        break
                    self._sleep(1)
            else:
                logger.warning("machinectl poweroff %s 失败: %s", name, r.stderr.strip())

        if self.is_running(name):
            logger.debug("容器 %s 仍在运行，强制终止", name)
            ex.run(["machinectl", "terminate", name], label="终止容器")
            self.ctx.host.note_machine_stopped(name)
        logger.info("容器已停止: %s", name)
        return True

    def destroy(self, name: str, force: bool = False) -> bool:
        """停止（如需要）并移除；不存在返回 False"""
        state = self.status(name)
        if state is ContainerState.ABSENT:
            logger.info("容器 %s 不存在", name)
            return False
        if state is ContainerState.RUNNING:
            self.stop(name, force=force)
        if self.ctx.host.machine_image_exists(name):
            self.ctx.executor.run(["machinectl", "remove", name], label="移除容器")
        self.ctx.host.note_machine_removed(name)
        logger.info("容器已销毁: %s", name)
        return True

    def cleanup_for_build(self, name: str) -> None:
        """尽力停止并移除容器，失败只记录日志"""
        try:
            self.destroy(name)
        except ZfsRootError as e:
            logger.warning("清理容器 %s 失败（忽略）: %s", name, e)

    # ---- 容器内执行 ----

    def exec(self, name: str, argv: list[str]) -> None:
        """在运行中的容器内执行命令，失败抛 ExternalToolError"""
        self._require_running(name)
        self.ctx.executor.run(
            ["systemd-run", f"--machine={name}", "--wait", *argv],
            label=f"容器 {name} 内执行",
        )

    def run_script(self, name: str, script: str) -> None:
        self.exec(name, ["bash", "-c", script])

    def _script(self, name: str, script: str) -> bool:
        r = self.ctx.executor.execute(
            ["systemd-run", f"--machine={name}", "--wait", "bash", "-c", script],
        )
        return r.success

    def install_packages(self, name: str, packages: list[str]) -> None:
        logger.info("容器 %s 安装软件包: %s", name, " ".join(packages))
        self.run_script(
            name,
            "export DEBIAN_FRONTEND=noninteractive\n"
            "apt-get update -q\n"
            f"apt-get install -y -q {' '.join(packages)}",
        )

    def shell(self, name: str, shell: str = "/bin/bash") -> int:
        """在容器内打开交互式 shell（不捕获输出），返回退出码"""
        self._require_running(name)
        r = self.ctx.executor.execute(["machinectl", "shell", name, shell], capture=False)
        return r.returncode
