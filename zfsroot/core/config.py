"""集中配置管理

替代各脚本散落的 DEFAULT_* 常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖（CLI 选项）。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, replace

import yaml

from zfsroot.core.exceptions import ConfigError
from zfsroot.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/zfsroot.yml"


def _default_distro_versions() -> dict[str, list[dict[str, str]]]:
    # 新版本在前，未指定版本时取第一项
    return {
        "ubuntu": [
            {"version": "25.04", "codename": "plucky"},
            {"version": "24.10", "codename": "oracular"},
            {"version": "24.04", "codename": "noble"},
            {"version": "22.04", "codename": "jammy"},
        ],
        "debian": [
            {"version": "13", "codename": "trixie"},
            {"version": "12", "codename": "bookworm"},
            {"version": "11", "codename": "bullseye"},
        ],
    }


def _default_profile_packages() -> dict[str, list[str]]:
    return {
        "minimal": [],
        "standard": ["openssh-server", "vim", "less", "bash-completion"],
        "full": [
            "openssh-server", "vim", "less", "bash-completion",
            "htop", "rsync", "tmux", "git", "curl", "wget",
        ],
    }


@dataclass
class Config:
    """全局配置"""

    # ZFS
    pool: str = "zroot"
    root_dataset: str = "ROOT"
    mount_base: str = "/var/tmp/zfs-builds"

    # 构建状态
    status_dir: str = "/var/tmp/zfs-builds"

    # 发行版
    distribution: str = "ubuntu"
    arch: str = "amd64"
    profile: str = "minimal"
    docker_image: str = "ubuntu:latest"
    distro_versions: dict[str, list[dict[str, str]]] = field(
        default_factory=_default_distro_versions,
    )
    profile_packages: dict[str, list[str]] = field(
        default_factory=_default_profile_packages,
    )

    # 快照
    snapshots: bool = True
    snapshot_retain: int = 3

    # 容器（秒）
    container_ready_timeout: int = 30
    container_systemd_timeout: int = 60
    container_stop_timeout: int = 10
    container_packages: list[str] = field(
        default_factory=lambda: ["ansible", "python3-apt"],
    )

    # Ansible
    host_vars_dir: str = "config/host_vars"
    ansible_dir: str = "ansible"
    ansible_playbook: str = "site.yml"
    ansible_inventory: str = "inventory"

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_PATH) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (ValueError, OSError) as e:
            raise ConfigError(f"无法读取配置文件 {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"配置文件格式错误 {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置项无效 {path}: {e}") from e
        cfg.extra = extra
        cfg.validate()
        return cfg

    def validate(self) -> None:
        """基础合法性检查"""
        if not self.pool:
            raise ConfigError("pool 不能为空")
        if not self.mount_base.startswith("/"):
            raise ConfigError(f"mount_base 必须是绝对路径: {self.mount_base}")
        if self.snapshot_retain < 1:
            raise ConfigError("snapshot_retain 至少为 1")
        for name in ("container_ready_timeout", "container_systemd_timeout",
                     "container_stop_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} 必须为正数")

    def override(self, **changes: object) -> Config:
        """返回应用了非空覆盖项的新配置（CLI 选项优先于文件）"""
        effective = {k: v for k, v in changes.items() if v not in (None, "")}
        if not effective:
            return self
        cfg = replace(self, **effective)
        cfg.validate()
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.debug("配置已加载: %s", path)
    return _current


def set_config(cfg: Config) -> None:
    """替换全局配置"""
    global _current  # noqa: PLW0603
    _current = cfg
