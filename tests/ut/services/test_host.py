"""主机状态视图测试"""

from __future__ import annotations

from pathlib import Path

from zfsroot.services.host import SimulatedHostState, SystemHostState
from zfsroot.utils.shell import CommandResult, RecordingExecutor


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


class TestSystemHostState:
    def test_existence_by_returncode(self) -> None:
        rec = RecordingExecutor()
        rec.fail("zfs list -H -o name zroot/missing")
        host = SystemHostState(rec)
        assert host.dataset_exists("zroot/ROOT")
        assert not host.dataset_exists("zroot/missing")

    def test_list_children_excludes_self(self) -> None:
        rec = RecordingExecutor(results={
            "zfs list": _ok("zroot/ROOT\nzroot/ROOT/a\nzroot/ROOT/b\n"),
        })
        assert SystemHostState(rec).list_children("zroot/ROOT") == ["zroot/ROOT/a", "zroot/ROOT/b"]

    def test_property_missing(self) -> None:
        rec = RecordingExecutor()
        rec.fail("zfs get")
        assert SystemHostState(rec).get_property("zroot/x", "used") is None

    def test_running_machines(self) -> None:
        rec = RecordingExecutor(results={
            "machinectl list": _ok("noble container systemd-nspawn ubuntu 24.04 -\n"),
        })
        assert SystemHostState(rec).running_machines() == ["noble"]

    def test_filesystem_reads(self, tmp_path: Path) -> None:
        host = SystemHostState(RecordingExecutor())
        assert not host.has_content(str(tmp_path))
        for d in ("etc", "usr", "bin"):
            (tmp_path / d).mkdir()
        assert host.has_content(str(tmp_path))
        assert not host.looks_like_rootfs(str(tmp_path))
        (tmp_path / "sbin").mkdir()
        assert host.looks_like_rootfs(str(tmp_path))

    def test_mounted_source_skips_findmnt_when_not_mounted(self, tmp_path: Path) -> None:
        rec = RecordingExecutor()
        assert SystemHostState(rec).mounted_source(str(tmp_path)) is None
        assert rec.calls == []


class TestSimulatedHostState:
    def test_pool_health_default(self) -> None:
        host = SimulatedHostState().add_pool("zroot")
        assert host.get_pool_property("zroot", "health") == "ONLINE"
        assert host.get_pool_property("zroot", "bootfs") == "-"
        assert host.get_pool_property("tank", "health") is None

    def test_children_and_destroy_recursive(self) -> None:
        host = SimulatedHostState()
        for d in ("z/ROOT", "z/ROOT/a", "z/ROOT/a/varlog", "z/ROOT/ab"):
            host.add_dataset(d)
        host.note_snapshot_created("z/ROOT/a@s1")
        assert host.list_children("z/ROOT") == ["z/ROOT/a", "z/ROOT/ab"]
        assert host.snapshot_exists("z/ROOT/a/varlog@s1")
        assert not host.snapshot_exists("z/ROOT/ab@s1")

        host.note_dataset_destroyed("z/ROOT/a")
        assert sorted(host.datasets) == ["z/ROOT", "z/ROOT/ab"]
        assert host.snapshots == []

    def test_machines(self) -> None:
        host = SimulatedHostState()
        host.note_machine_started("c1")
        assert host.running_machines() == ["c1"]
        host.note_machine_stopped("c1")
        assert not host.machine_running("c1")
        assert host.machine_image_exists("c1")
        host.note_machine_removed("c1")
        assert not host.machine_image_exists("c1")

    def test_rootfs_installed(self) -> None:
        host = SimulatedHostState()
        host.note_rootfs_installed("/mnt/b")
        assert host.looks_like_rootfs("/mnt/b")
        assert host.has_content("/mnt/b/var/log")
