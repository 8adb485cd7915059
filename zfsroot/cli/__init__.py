"""zfsroot 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
业务异常（ZfsRootError）统一在 group 层转换为 stderr 提示 + 对应退出码。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from zfsroot import __version__
from zfsroot.core.config import DEFAULT_CONFIG_PATH, init_config, set_config
from zfsroot.core.exceptions import ZfsRootError
from zfsroot.core.lock import build_lock
from zfsroot.core.recovery import recovery_hints
from zfsroot.core.validation import validate_build_name
from zfsroot.services.container import configure_container, get_container
from zfsroot.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


@contextmanager
def _locked(build_name: str) -> Iterator[Any]:
    """持有构建锁执行变更类命令，与同名构建的编排进程互斥（dry-run 不加锁）"""
    svc = _svc()
    validate_build_name(build_name)
    lock_path = None if svc.context.dry_run else svc.status.lock_file(build_name)
    with build_lock(lock_path):
        yield svc


class _ZfsRootGroup(click.Group):
    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except ZfsRootError as e:
            click.echo(f"错误 [{e.code}]: {e}", err=True)
            for hint in recovery_hints(e):
                click.echo(f"  - {hint}", err=True)
            ctx.exit(e.exit_code)


@click.group(cls=_ZfsRootGroup)
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=DEFAULT_CONFIG_PATH, help="配置文件路径")
@click.option("--debug", is_flag=True, help="执行前打印每条命令，日志级别 DEBUG")
@click.option("--dry-run", is_flag=True, help="只打印将要执行的操作，不做任何修改")
@click.option("--pool", default="", help="ZFS 存储池（覆盖配置）")
@click.option("--mount-base", default="", help="构建挂载根目录（覆盖配置）")
@click.option("--status-dir", default="", help="构建状态目录（覆盖配置）")
def main(
    config_path: str, debug: bool, dry_run: bool,
    pool: str, mount_base: str, status_dir: str,
) -> None:
    """zfsroot - ZFS 根文件系统分阶段构建工具"""
    setup_logging(
        level="DEBUG" if debug else os.getenv("ZFSROOT_LOG_LEVEL", "INFO"),
        json_output=os.getenv("ZFSROOT_LOG_JSON", "") == "1",
    )
    cfg = init_config(config_path).override(
        pool=pool, mount_base=mount_base, status_dir=status_dir,
    )
    set_config(cfg)
    configure_container(cfg, dry_run=dry_run, debug=debug)


# 注册各领域子命令
from zfsroot.cli.cmd_build import register as _reg_build  # noqa: E402
from zfsroot.cli.cmd_status import register as _reg_status  # noqa: E402
from zfsroot.cli.cmd_dataset import register as _reg_dataset  # noqa: E402
from zfsroot.cli.cmd_snapshot import register as _reg_snapshot  # noqa: E402
from zfsroot.cli.cmd_container import register as _reg_container  # noqa: E402
from zfsroot.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_build(main)
_reg_status(main)
_reg_dataset(main)
_reg_snapshot(main)
_reg_container(main)
_reg_misc(main)
