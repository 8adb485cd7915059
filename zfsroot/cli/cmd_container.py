"""CLI — systemd-nspawn 容器命令"""

from __future__ import annotations

import click

from zfsroot.cli import _locked, _svc


def register(group: click.Group) -> None:
    group.add_command(container_group)


@click.group(name="container")
def container_group() -> None:
    """配置用容器管理"""


@container_group.command(name="create")
@click.argument("build_name")
@click.option("--name", default="", help="容器名（默认与构建名相同）")
@click.option("--hostname", default="", help="容器主机名（默认与容器名相同）")
@click.option("--install", "packages", multiple=True, help="启动后安装的软件包（可多次）")
def container_create(build_name: str, name: str, hostname: str, packages: tuple[str, ...]) -> None:
    """创建并启动容器"""
    with _locked(build_name) as svc:
        install = list(packages) if packages else svc.config.container_packages
        created = svc.containers.create(build_name, name, hostname, install_packages=install)
    if created:
        click.echo(f"容器已创建: {name or build_name}")
    else:
        click.echo(f"容器已在运行: {name or build_name}")


@container_group.command(name="start")
@click.argument("build_name")
@click.option("--name", default="", help="容器名（默认与构建名相同）")
@click.option("--hostname", default="", help="容器主机名")
def container_start(build_name: str, name: str, hostname: str) -> None:
    """启动容器"""
    with _locked(build_name) as svc:
        started = svc.containers.start(build_name, name, hostname)
    if started:
        click.echo(f"容器已启动: {name or build_name}")
    else:
        click.echo(f"容器已在运行: {name or build_name}")


@container_group.command(name="stop")
@click.argument("name")
@click.option("--force", is_flag=True, help="直接强制终止")
@click.option("--timeout", type=int, default=None, help="等待关机的秒数")
def container_stop(name: str, force: bool, timeout: int | None) -> None:
    """停止容器"""
    if _svc().containers.stop(name, force=force, timeout=timeout):
        click.echo(f"容器已停止: {name}")
    else:
        click.echo(f"容器未运行: {name}")


@container_group.command(name="destroy")
@click.argument("name")
@click.option("--force", is_flag=True, help="强制终止")
def container_destroy(name: str, force: bool) -> None:
    """停止并移除容器"""
    if _svc().containers.destroy(name, force=force):
        click.echo(f"容器已销毁: {name}")
    else:
        click.echo(f"容器不存在: {name}")


@container_group.command(name="exec", context_settings={"ignore_unknown_options": True})
@click.argument("name")
@click.argument("argv", nargs=-1, required=True, type=click.UNPROCESSED)
def container_exec(name: str, argv: tuple[str, ...]) -> None:
    """在运行中的容器内执行命令"""
    _svc().containers.exec(name, list(argv))


@container_group.command(name="shell")
@click.argument("name")
@click.option("--shell", "shell_path", default="/bin/bash", help="shell 路径")
def container_shell(name: str, shell_path: str) -> None:
    """在容器内打开交互式 shell"""
    rc = _svc().containers.shell(name, shell_path)
    if rc != 0:
        raise SystemExit(rc)


@container_group.command(name="list")
def container_list() -> None:
    """列出运行中的容器"""
    names = _svc().containers.list_running()
    if not names:
        click.echo("没有运行中的容器。")
        return
    for n in names:
        click.echo(f"  {n}")
