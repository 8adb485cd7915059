"""CLI — ZFS 数据集命令

变更类命令持有构建锁，与正在运行的同名构建互斥。
"""

from __future__ import annotations

import click

from zfsroot.cli import _locked, _svc


def register(group: click.Group) -> None:
    group.add_command(dataset_group)


@click.group(name="dataset")
def dataset_group() -> None:
    """根数据集管理"""


@dataset_group.command(name="create")
@click.argument("build_name")
@click.option("--cleanup", is_flag=True, help="已存在时先销毁再重建")
def dataset_create(build_name: str, cleanup: bool) -> None:
    """创建根数据集与 varlog 子数据集"""
    with _locked(build_name) as svc:
        root = svc.zfs.create_root_dataset(build_name, cleanup=cleanup)
    click.echo(f"数据集已创建: {root}")


@dataset_group.command(name="destroy")
@click.argument("build_name")
@click.option("--force", is_flag=True, help="强制卸载并销毁")
@click.confirmation_option(prompt="将永久删除该构建的根数据集及全部快照，确认继续？")
def dataset_destroy(build_name: str, force: bool) -> None:
    """销毁根数据集（破坏性操作）"""
    with _locked(build_name) as svc:
        svc.zfs.destroy_build(build_name, force=force)
    click.echo(f"数据集已销毁: {svc.context.root_dataset(build_name)}")


@dataset_group.command(name="mount")
@click.argument("build_name")
def dataset_mount(build_name: str) -> None:
    """挂载根数据集到构建区"""
    with _locked(build_name) as svc:
        mp = svc.zfs.mount_root_dataset(build_name)
    click.echo(f"已挂载: {mp}")


@dataset_group.command(name="mount-varlog")
@click.argument("build_name")
def dataset_mount_varlog(build_name: str) -> None:
    """挂载 varlog 数据集"""
    with _locked(build_name) as svc:
        target = svc.zfs.mount_varlog(build_name)
    click.echo(f"已挂载: {target}")


@dataset_group.command(name="unmount")
@click.argument("build_name")
def dataset_unmount(build_name: str) -> None:
    """从构建区卸载根数据集"""
    with _locked(build_name) as svc:
        done = svc.zfs.unmount_root_dataset(build_name)
    if done:
        click.echo(f"已卸载: {svc.context.mount_point(build_name)}")
    else:
        click.echo("未挂载，无需卸载")


@dataset_group.command(name="promote")
@click.argument("build_name")
@click.confirmation_option(prompt="将把该构建设置为下次启动的根文件系统，确认继续？")
def dataset_promote(build_name: str) -> None:
    """提升为启动环境（设置 bootfs）"""
    with _locked(build_name) as svc:
        root = svc.zfs.promote_to_bootfs(build_name)
    click.echo(f"已设置 bootfs: {root}（重启后生效）")


@dataset_group.command(name="list")
def dataset_list() -> None:
    """列出所有根数据集"""
    infos = _svc().zfs.list_root_datasets()
    if not infos:
        click.echo("没有根数据集。")
        return
    for i in infos:
        click.echo(f"  {i.name:40s} {i.used:>8s}  {i.mountpoint:20s} {i.flags}")
