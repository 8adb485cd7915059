"""ContainerDriver 单元测试"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from zfsroot.core.config import Config
from zfsroot.core.exceptions import ExternalToolError, InvalidRootfsError, NotRunningError
from zfsroot.core.models import ContainerState
from zfsroot.services.context import BuildContext
from zfsroot.services.host import SimulatedHostState
from zfsroot.services.nspawn import ContainerDriver, nspawn_argv
from zfsroot.utils.shell import RecordingExecutor

MP = "/mnt/builds/noble"


class _StickyHost(SimulatedHostState):
    """machinectl 永远看不到容器注册 / 关机的主机"""

    def note_machine_started(self, name: str) -> None:
        pass

    def note_machine_stopped(self, name: str) -> None:
        pass


def _driver(
    host: SimulatedHostState | None = None, *, dry_run: bool = False, rootfs: bool = True,
) -> tuple[ContainerDriver, RecordingExecutor, SimulatedHostState, MagicMock]:
    rec = RecordingExecutor()
    host = host if host is not None else SimulatedHostState()
    if rootfs:
        host.note_rootfs_installed(MP)
    cfg = Config(mount_base="/mnt/builds", container_ready_timeout=3, container_stop_timeout=2)
    ctx = BuildContext.from_config(cfg, dry_run=dry_run, inner=rec, host=host)
    sleep = MagicMock()
    return ContainerDriver(ctx, sleep=sleep), rec, host, sleep


class TestCreate:
    def test_requires_rootfs(self) -> None:
        drv, rec, _, _ = _driver(rootfs=False)
        with pytest.raises(InvalidRootfsError, match="etc/usr/bin/sbin"):
            drv.create("noble")
        assert rec.calls == []

    def test_full_sequence(self) -> None:
        drv, rec, host, _ = _driver()
        assert drv.create("noble", hostname="web01", install_packages=["ansible"])
        cmds = rec.commands()
        assert cmds[0] == f"cp /etc/hostid {MP}/etc/hostid"
        assert rec.calls[1] == nspawn_argv(MP, "noble", "web01")
        assert "--hostname=web01" in rec.calls[1]
        assert any("systemctl enable systemd-networkd systemd-resolved" in c for c in cmds)
        assert any("apt-get install -y -q ansible" in c for c in cmds)
        assert host.machine_running("noble")

    def test_running_is_noop(self) -> None:
        drv, rec, host, _ = _driver()
        host.note_machine_started("noble")
        assert not drv.create("noble")
        assert rec.calls == []

    def test_network_failure_non_fatal(self) -> None:
        drv, rec, _, _ = _driver()
        rec.fail("systemd-run --machine=noble --wait bash -c systemctl")
        assert drv.create("noble")

    def test_package_failure_fatal(self) -> None:
        drv, rec, _, _ = _driver()
        rec.fail("systemd-run --machine=noble --wait bash -c export", stderr="E: Unable to locate")
        with pytest.raises(ExternalToolError, match="Unable to locate"):
            drv.create("noble", install_packages=["nope"])


class TestStart:
    def test_registration_timeout(self) -> None:
        drv, rec, _, sleep = _driver(_StickyHost())
        with pytest.raises(ExternalToolError) as exc:
            drv.start("noble")
        assert exc.value.returncode == 124
        assert exc.value.exit_code == 7
        assert sleep.call_count == 3

    def test_systemd_not_ready_only_warns(self) -> None:
        drv, rec, host, _ = _driver()
        rec.fail("systemd-run --machine=noble --wait /bin/true")
        assert drv.start("noble")
        assert host.machine_running("noble")

    def test_dry_run_spawns_nothing(self) -> None:
        drv, rec, host, sleep = _driver(dry_run=True)
        assert drv.start("noble")
        assert rec.calls == []
        sleep.assert_not_called()
        assert drv.status("noble") is ContainerState.RUNNING


class TestStopDestroy:
    def test_stop_not_running(self) -> None:
        drv, rec, _, _ = _driver()
        assert not drv.stop("noble")
        assert rec.calls == []

    def test_graceful_stop(self) -> None:
        drv, rec, host, _ = _driver()
        host.note_machine_started("noble")
        assert drv.stop("noble")
        assert rec.commands() == ["machinectl poweroff noble"]
        assert drv.status("noble") is ContainerState.STOPPED

    def test_escalates_to_terminate(self) -> None:
        host = _StickyHost()
        host.machines["noble"] = True
        drv, rec, _, sleep = _driver(host)
        drv.stop("noble")
        assert rec.commands() == ["machinectl poweroff noble", "machinectl terminate noble"]
        assert sleep.call_count == 2

    def test_force_skips_poweroff(self) -> None:
        drv, rec, host, _ = _driver()
        host.note_machine_started("noble")
        drv.stop("noble", force=True)
        assert rec.commands() == ["machinectl terminate noble"]

    def test_destroy(self) -> None:
        drv, rec, host, _ = _driver()
        assert not drv.destroy("noble")
        host.note_machine_started("noble")
        assert drv.destroy("noble")
        assert rec.commands()[-1] == "machinectl remove noble"
        assert drv.status("noble") is ContainerState.ABSENT

    def test_cleanup_never_raises(self) -> None:
        drv, rec, host, _ = _driver()
        host.note_machine_started("noble")
        rec.fail("machinectl poweroff")
        rec.fail("machinectl terminate")
        drv.cleanup_for_build("noble")


class TestExec:
    def test_requires_running(self) -> None:
        drv, _, _, _ = _driver()
        with pytest.raises(NotRunningError):
            drv.exec("noble", ["true"])
        with pytest.raises(NotRunningError):
            drv.shell("noble")

    def test_exec_and_shell(self) -> None:
        drv, rec, host, _ = _driver()
        host.note_machine_started("noble")
        drv.exec("noble", ["apt-get", "update"])
        assert rec.commands()[-1] == "systemd-run --machine=noble --wait apt-get update"
        assert drv.shell("noble", "/bin/sh") == 0
        assert rec.commands()[-1] == "machinectl shell noble /bin/sh"

    def test_list_running(self) -> None:
        drv, _, host, _ = _driver()
        host.note_machine_started("b")
        host.note_machine_started("a")
        assert drv.list_running() == ["a", "b"]
