"""CLI — 构建阶段快照命令"""

from __future__ import annotations

import click

from zfsroot.cli import _locked, _svc


def register(group: click.Group) -> None:
    group.add_command(snapshot_group)


@click.group(name="snapshot")
def snapshot_group() -> None:
    """构建阶段快照管理"""


@snapshot_group.command(name="create")
@click.argument("build_name")
@click.argument("label")
def snapshot_create(build_name: str, label: str) -> None:
    """为根数据集创建带时间戳的递归快照"""
    with _locked(build_name) as svc:
        name = svc.zfs.create_snapshot(svc.context.root_dataset(build_name), label)
    click.echo(f"快照已创建: {name}")


@snapshot_group.command(name="list")
@click.argument("build_name")
@click.option("--pattern", default="", help="按子串过滤")
def snapshot_list(build_name: str, pattern: str) -> None:
    """列出快照（最新的在前）"""
    svc = _svc()
    snaps = svc.zfs.list_snapshots(svc.context.root_dataset(build_name), pattern)
    if not snaps:
        click.echo("没有快照。")
        return
    for s in snaps:
        click.echo(f"  {s}")


@snapshot_group.command(name="rollback")
@click.argument("build_name")
@click.argument("target")
@click.option("--force", is_flag=True, help="强制卸载后回滚")
def snapshot_rollback(build_name: str, target: str, force: bool) -> None:
    """回滚到快照；TARGET 为完整快照名或阶段标签（如 1-datasets-created）"""
    with _locked(build_name) as svc:
        if "@" in target:
            svc.zfs.rollback_snapshot(target, force=force)
            snap = target
        else:
            snap = svc.zfs.rollback_to_stage(build_name, target, force=force)
    click.echo(f"已回滚到: {snap}")


@snapshot_group.command(name="cleanup")
@click.argument("build_name")
@click.option("--label", default="", help="只清理该阶段标签的快照")
@click.option("--keep", type=int, default=None, help="保留数量（默认取配置）")
def snapshot_cleanup(build_name: str, label: str, keep: int | None) -> None:
    """按保留数量清理旧的阶段快照"""
    with _locked(build_name) as svc:
        removed = svc.zfs.cleanup_snapshots(svc.context.root_dataset(build_name), label, keep)
    click.echo(f"已删除 {len(removed)} 个快照")
    for s in removed:
        click.echo(f"  {s}")
