"""CLI — 杂项命令（配置查看、依赖检查）"""

from __future__ import annotations

import shutil

import click

from zfsroot.cli import _svc
from zfsroot.core.deps import BUILD_COMMANDS, INSTALL_HINTS, require_commands
from zfsroot.utils.yaml_io import dump_yaml


def register(group: click.Group) -> None:
    group.add_command(config_group)
    group.add_command(deps_group)


# ---- 配置 ----

@click.group(name="config")
def config_group() -> None:
    """配置查看"""


@config_group.command(name="show")
def config_show() -> None:
    """以 YAML 打印生效配置（文件 + CLI 覆盖）"""
    click.echo(dump_yaml(_svc().config.to_dict()), nl=False)


# ---- 依赖 ----

@click.group(name="deps")
def deps_group() -> None:
    """外部命令依赖"""


@deps_group.command(name="check")
def deps_check() -> None:
    """检查构建所需命令是否齐全"""
    for cmd in BUILD_COMMANDS:
        path = shutil.which(cmd)
        if path:
            click.echo(f"  [OK]      {cmd:16s} {path}")
        else:
            click.echo(f"  [MISSING] {cmd:16s} {INSTALL_HINTS.get(cmd, '')}")
    require_commands(BUILD_COMMANDS)
    click.echo("依赖齐全")
