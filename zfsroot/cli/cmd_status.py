"""CLI — 构建状态命令"""

from __future__ import annotations

import click

from zfsroot.cli import _locked, _svc
from zfsroot.core.models import STAGE_ORDER, Status
from zfsroot.core.stages import next_stage, should_run
from zfsroot.core.status import format_duration
from zfsroot.core.validation import validate_build_name


def register(group: click.Group) -> None:
    group.add_command(status_group)


def _parse_status(value: str) -> Status:
    st = Status.parse(value)
    if st is None:
        raise click.BadParameter(
            f"无效状态 '{value}'，可选值: {', '.join(s.value for s in Status)}",
        )
    return st


@click.group(name="status")
def status_group() -> None:
    """构建状态管理"""


@status_group.command(name="get")
@click.argument("build_name")
def status_get(build_name: str) -> None:
    """打印当前状态（无状态时输出空行）"""
    validate_build_name(build_name)
    st = _svc().status.get_status(build_name)
    click.echo(st.value if st else "")


@status_group.command(name="set")
@click.argument("build_name")
@click.argument("status")
@click.argument("message", default="")
def status_set(build_name: str, status: str, message: str) -> None:
    """手动追加一条状态记录"""
    with _locked(build_name) as svc:
        if svc.context.dry_run:
            click.echo(f"[DRY RUN] Would set status: {build_name} = {status}")
            return
        entry = svc.status.set_status(build_name, status, message)
    click.echo(f"状态已更新: {build_name} = {entry.status}")


@status_group.command(name="clear")
@click.argument("build_name")
@click.option("--force", is_flag=True, help="同时删除所有 <build>.* 残留文件")
def status_clear(build_name: str, force: bool) -> None:
    """清除构建状态与构建日志"""
    with _locked(build_name) as svc:
        if svc.context.dry_run:
            click.echo(f"[DRY RUN] Would clear status: {build_name}")
            return
        removed = svc.status.clear(build_name, force=force)
    if not removed:
        click.echo(f"构建 {build_name} 没有状态文件")
        return
    for p in removed:
        click.echo(f"已删除: {p}")


@status_group.command(name="list")
def status_list() -> None:
    """列出所有已记录状态的构建"""
    store = _svc().status
    builds = store.list_builds()
    if not builds:
        click.echo("没有已记录的构建。")
        return
    for b in builds:
        entry = store.last_entry(b)
        if entry is None:
            click.echo(f"  {b:30s} -")
            continue
        click.echo(f"  {b:30s} {entry.status.value:20s} {entry.timestamp:%Y-%m-%d %H:%M:%S}")


@status_group.command(name="show")
@click.argument("build_name")
def status_show(build_name: str) -> None:
    """显示构建详情：状态、数据集、挂载、快照与容器"""
    validate_build_name(build_name)
    svc = _svc()
    entry = svc.status.last_entry(build_name)
    ctx = svc.context
    click.echo(f"构建: {build_name}")
    if entry is None:
        click.echo("  状态: 无")
    else:
        click.echo(f"  状态: {entry.status}  ({entry.timestamp:%Y-%m-%d %H:%M:%S})")
        if entry.message:
            click.echo(f"  消息: {entry.message}")

    info = svc.zfs.dataset_info(build_name)
    if info is None:
        click.echo(f"  数据集: {ctx.root_dataset(build_name)} (不存在)")
    else:
        click.echo(f"  数据集: {info.name}  used={info.used}  [{info.flags}]")
        click.echo(f"  挂载点: {ctx.mount_point(build_name)}")
        click.echo(f"  快照: {len(info.snapshots)} 个")
        for s in info.snapshots[-5:]:
            click.echo(f"    {s}")
    click.echo(f"  容器: {svc.containers.status(build_name).value}")
    click.echo(f"  构建日志: {svc.status.log_file(build_name)}")


@status_group.command(name="history")
@click.argument("build_name")
def status_history(build_name: str) -> None:
    """显示状态历史及各阶段耗时"""
    validate_build_name(build_name)
    rows = _svc().status.history_with_durations(build_name)
    if not rows:
        click.echo(f"构建 {build_name} 没有历史记录")
        return
    total = 0.0
    for row in rows:
        e = row.entry
        total += row.duration or 0.0
        click.echo(
            f"  {e.timestamp:%Y-%m-%d %H:%M:%S}  {format_duration(row.duration)}  "
            f"{e.status.value:20s} {e.message}"
        )
    click.echo(f"总耗时: {format_duration(total)}")


@status_group.command(name="next")
@click.argument("build_name")
def status_next(build_name: str) -> None:
    """打印下一个应执行的阶段（没有则输出空行）"""
    validate_build_name(build_name)
    current = _svc().status.get_status(build_name)
    nxt = STAGE_ORDER[0] if current is None else next_stage(current)
    click.echo(nxt.value if nxt else "")


@status_group.command(name="should-run")
@click.argument("build_name")
@click.argument("stage")
@click.option("--force-restart", is_flag=True, help="无条件放行")
def status_should_run(build_name: str, stage: str, force_restart: bool) -> None:
    """阶段可执行时退出码 0，否则 1"""
    validate_build_name(build_name)
    requested = _parse_status(stage)
    current = _svc().status.get_status(build_name)
    ok = should_run(requested, current, force_restart)
    click.echo("yes" if ok else "no")
    if not ok:
        raise SystemExit(1)
