"""阶段协作方 - 编排核心之外的外部能力

编排核心只关心它们成功与否，不关心内部实现:
- PackageProvider:     发行版 + 配置档 + 架构 → 额外软件包列表
- DistroResolver:      发行版 + 版本/代号 → (版本, 代号)
- OsInstaller:         把基础系统安装到挂载点
- ConfigurationRunner: 在容器内执行 Ansible，返回退出码

默认实现均由 Config 驱动，可在 ServiceContainer 中替换。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from zfsroot.core.exceptions import InvalidRootfsError, NotRunningError, ValidationError
from zfsroot.core.validation import validate_profile

if TYPE_CHECKING:
    from zfsroot.core.config import Config
    from zfsroot.services.context import BuildContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DistroRelease:
    """解析后的发行版版本"""

    distribution: str
    version: str
    codename: str

    def __str__(self) -> str:
        return f"{self.distribution} {self.version} ({self.codename})"


# =========================================================================
# 协议
# =========================================================================


class PackageProvider(Protocol):
    def get_packages(self, distribution: str, profile: str, arch: str) -> list[str]: ...


class DistroResolver(Protocol):
    def resolve(self, distribution: str, version: str = "", codename: str = "") -> DistroRelease: ...


class OsInstaller(Protocol):
    def install(
        self, mount_point: str, release: DistroRelease, arch: str, packages: list[str],
    ) -> None: ...


class ConfigurationRunner(Protocol):
    def run(self, mount_point: str, container: str, tags: str = "", limit: str = "") -> int: ...


# =========================================================================
# 默认实现
# =========================================================================


class ProfilePackageProvider:
    """按配置档从 Config.profile_packages 取软件包"""

    def __init__(self, config: Config) -> None:
        self.config = config

    def get_packages(self, distribution: str, profile: str, arch: str) -> list[str]:
        validate_profile(profile)
        packages = list(self.config.profile_packages.get(profile, []))
        logger.debug("配置档 %s (%s/%s) 软件包: %s", profile, distribution, arch, packages)
        return packages


class StaticDistroResolver:
    """从 Config.distro_versions 静态表解析版本与代号

    都未指定时取表中第一项（最新版本）；两者都指定时必须一致。
    """

    def __init__(self, config: Config) -> None:
        self.config = config

    def resolve(self, distribution: str, version: str = "", codename: str = "") -> DistroRelease:
        table = self.config.distro_versions.get(distribution)
        if not table:
            raise ValidationError(f"没有发行版 {distribution} 的版本信息")

        if not version and not codename:
            row = table[0]
        else:
            matches = [
                r for r in table
                if (not version or r.get("version") == version)
                and (not codename or r.get("codename") == codename)
            ]
            if not matches:
                known = ", ".join(f"{r['version']}/{r['codename']}" for r in table)
                raise ValidationError(
                    f"无法解析 {distribution} 版本 (version={version or '-'}, "
                    f"codename={codename or '-'})，已知: {known}"
                )
            row = matches[0]
        release = DistroRelease(distribution, str(row["version"]), str(row["codename"]))
        logger.info("发行版: %s", release)
        return release


BASE_PACKAGES: dict[str, list[str]] = {
    "ubuntu": [
        "ca-certificates", "ubuntu-keyring", "systemd", "init", "linux-image-generic",
        "zfsutils-linux", "zfs-initramfs", "apt", "curl", "wget",
    ],
    "debian": [
        "ca-certificates", "debian-archive-keyring", "systemd", "systemd-sysv",
        "linux-image-amd64", "zfsutils-linux", "zfs-initramfs", "apt", "curl", "wget",
    ],
}

MIRRORS = {
    "ubuntu": "http://archive.ubuntu.com/ubuntu",
    "debian": "http://deb.debian.org/debian",
}


class DockerMmdebstrapInstaller:
    """在 Docker 容器中运行 mmdebstrap，把基础系统直接写入挂载点"""

    def __init__(self, ctx: BuildContext) -> None:
        self.ctx = ctx

    def command(
        self, mount_point: str, release: DistroRelease, arch: str, packages: list[str],
    ) -> list[str]:
        include = BASE_PACKAGES.get(release.distribution, []) + packages
        mmdebstrap = (
            f"mmdebstrap --arch={arch} --variant=minbase "
            f"--include={','.join(dict.fromkeys(include))} "
            f"{release.codename} /output {MIRRORS.get(release.distribution, '')}"
        )
        script = (
            "set -euo pipefail; apt-get update; "
            "apt-get install -y mmdebstrap wget gnupg; " + mmdebstrap
        )
        return [
            "docker", "run", "--rm", "--privileged",
            "-v", f"{mount_point}:/output",
            self.ctx.config.docker_image,
            "bash", "-c", script,
        ]

    def install(
        self, mount_point: str, release: DistroRelease, arch: str, packages: list[str],
    ) -> None:
        logger.info("安装基础系统 %s (%s) -> %s", release, arch, mount_point)
        self.ctx.executor.run(self.command(mount_point, release, arch, packages), label="安装基础系统")
        self.ctx.host.note_rootfs_installed(mount_point)
        if not self.ctx.host.looks_like_rootfs(mount_point):
            raise InvalidRootfsError(f"基础系统安装后 {mount_point} 下缺少 etc/usr/bin/sbin")


ANSIBLE_CONFIG_DIR = "/opt/ansible-config"


class NspawnAnsibleRunner:
    """把 Ansible 内容放入根文件系统，并在运行中的容器里执行 ansible-playbook"""

    def __init__(self, ctx: BuildContext) -> None:
        self.ctx = ctx

    def playbook_argv(self, tags: str = "", limit: str = "") -> list[str]:
        cfg = self.ctx.config
        argv = ["ansible-playbook", "-i", cfg.ansible_inventory, cfg.ansible_playbook, "-c", "local"]
        if limit:
            argv += ["-l", limit]
        if tags:
            argv += ["--tags", tags]
        return argv

    def run(self, mount_point: str, container: str, tags: str = "", limit: str = "") -> int:
        ctx = self.ctx
        if not ctx.host.machine_running(container):
            raise NotRunningError(f"容器未运行: {container}")

        dest = f"{mount_point}{ANSIBLE_CONFIG_DIR}"
        ex = ctx.executor
        ex.run(["rm", "-rf", dest], label="清理 Ansible 目录")
        ex.run(["mkdir", "-p", dest], label="创建 Ansible 目录")
        ex.run(["cp", "-rT", str(Path(ctx.config.ansible_dir)), dest], label="复制 Ansible 内容")
        ex.run(
            ["cp", "-rT", str(Path(ctx.config.host_vars_dir)), f"{dest}/host_vars"],
            label="复制 host_vars",
        )

        script = f"cd {ANSIBLE_CONFIG_DIR} && " + " ".join(self.playbook_argv(tags, limit))
        logger.info("容器 %s 执行: %s", container, script)
        r = ex.execute(["systemd-run", f"--machine={container}", "--wait", "bash", "-c", script])
        if not r.success:
            logger.error("ansible-playbook 失败 (rc=%d): %s", r.returncode, r.stderr.strip())
        return r.returncode
