"""ServiceContainer 单元测试"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

import zfsroot.core.config as cfgmod
from zfsroot.services.container import (
    ServiceContainer,
    configure_container,
    get_container,
    reset_container,
)
from zfsroot.services.host import SimulatedHostState, SystemHostState
from zfsroot.utils.shell import GuardedExecutor, RecordingExecutor


@pytest.fixture(autouse=True)
def _setup_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """确保测试有独立的配置和状态目录"""
    cfg = cfgmod.Config(pool="tank", status_dir=str(tmp_path / "status"))
    monkeypatch.setattr(cfgmod, "_current", cfg)
    reset_container()
    yield
    reset_container()


class TestServiceContainer:
    def test_lazy_loading(self) -> None:
        c = ServiceContainer()
        assert len(c._instances) == 0
        _ = c.zfs
        assert "zfs" in c._instances

    def test_shared_instances(self) -> None:
        c = ServiceContainer()
        assert c.zfs is c.zfs
        assert c.status is c.status

    def test_drivers_share_context(self) -> None:
        c = ServiceContainer(inner=RecordingExecutor(), host=SimulatedHostState())
        assert c.zfs.ctx is c.context
        assert c.containers.ctx is c.context
        assert c.installer.ctx is c.context  # type: ignore[attr-defined]

    def test_all_services_accessible(self) -> None:
        c = ServiceContainer()
        assert c.zfs is not None
        assert c.containers is not None
        assert c.status is not None
        assert c.packages is not None
        assert c.resolver is not None
        assert c.installer is not None
        assert c.configurer is not None

    def test_uses_current_config(self, tmp_path: Path) -> None:
        c = ServiceContainer()
        assert c.config.pool == "tank"
        assert c.status.status_dir == tmp_path / "status"

    def test_override(self) -> None:
        c = ServiceContainer()
        fake = MagicMock()
        c.override("installer", fake)
        assert c.installer is fake


class TestContextWiring:
    def test_dry_run_seeds_pool(self) -> None:
        c = ServiceContainer(dry_run=True)
        assert isinstance(c.context.host, SimulatedHostState)
        assert c.context.host.pool_exists("tank")
        assert c.context.dry_run

    def test_real_mode_reads_system(self) -> None:
        c = ServiceContainer()
        assert isinstance(c.context.host, SystemHostState)
        assert isinstance(c.context.executor, GuardedExecutor)
        assert not c.context.dry_run

    def test_explicit_host_kept(self) -> None:
        host = SimulatedHostState()
        c = ServiceContainer(dry_run=True, host=host)
        assert c.context.host is host
        assert not host.pool_exists("tank")


class TestGlobalContainer:
    def test_singleton(self) -> None:
        assert get_container() is get_container()

    def test_reset(self) -> None:
        c1 = get_container()
        reset_container()
        assert get_container() is not c1

    def test_configure(self) -> None:
        cfg = cfgmod.Config(pool="zroot")
        c = configure_container(cfg, dry_run=True, debug=True)
        assert get_container() is c
        assert c.config.pool == "zroot"
        assert c.context.dry_run and c.context.debug
