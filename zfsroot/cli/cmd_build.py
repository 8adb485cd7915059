"""CLI — 构建命令"""

from __future__ import annotations

import click

from zfsroot.cli import _svc
from zfsroot.core.deps import BUILD_COMMANDS, require_commands
from zfsroot.core.status import format_duration
from zfsroot.services.orchestrator import BuildOrchestrator, BuildPlan, BuildReport


def register(group: click.Group) -> None:
    group.add_command(build)


def _print_report(report: BuildReport) -> None:
    """打印构建报告"""
    title = "构建报告 [DRY RUN]" if report.dry_run else "构建报告"
    click.echo(f"\n=== {title} ===")
    click.echo(f"构建: {report.plan.build}  主机: {report.plan.hostname}  发行版: {report.release}")
    if not report.stages:
        click.echo("  没有需要执行的阶段")
    for r in report.stages:
        extra = f"  快照: {r.snapshot}" if r.snapshot else ""
        if r.simulated:
            extra += "  (模拟: 真实环境中会失败)"
        click.echo(f"  [{format_duration(r.duration)}] {r.stage}{extra}")
    click.echo(f"最终状态: {report.final_status or '-'}")
    click.echo(f"成功: {'是' if report.success else '否'}")


@click.command()
@click.argument("build_name")
@click.argument("hostname")
@click.option("--distribution", "-d", default="", help="发行版（默认取配置）")
@click.option("--version", "version", default="", help="发行版版本，如 24.04")
@click.option("--codename", default="", help="发行版代号，如 noble")
@click.option("--arch", "-a", default="", help="架构（默认取配置）")
@click.option("--profile", "-p", default="", help="软件包配置档（默认取配置）")
@click.option("--tags", default="", help="只执行指定 Ansible tags（逗号分隔）")
@click.option("--limit", default="", help="Ansible limit（默认为主机名）")
@click.option("--container", default="", help="容器名（默认与构建名相同）")
@click.option("--snapshots/--no-snapshots", default=None, help="每个阶段完成后创建快照")
@click.option("--force-restart", is_flag=True, help="忽略已有状态，从头重新构建")
def build(
    build_name: str, hostname: str, distribution: str, version: str,
    codename: str, arch: str, profile: str, tags: str, limit: str,
    container: str, snapshots: bool | None, force_restart: bool,
) -> None:
    """分阶段构建根文件系统（中断后重新执行即可续跑）"""
    svc = _svc()
    if not svc.context.dry_run:
        require_commands(BUILD_COMMANDS)

    plan = BuildPlan(
        build=build_name, hostname=hostname,
        distribution=distribution, version=version, codename=codename,
        arch=arch, profile=profile, tags=tags, limit=limit,
        snapshots=snapshots, force_restart=force_restart, container=container,
    )
    report = BuildOrchestrator(svc).run(plan)
    _print_report(report)
