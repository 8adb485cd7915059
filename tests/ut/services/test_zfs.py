"""ZfsDriver 单元测试（模拟主机 + 记录型执行器，不调用真实 zfs）"""

from __future__ import annotations

import copy
from datetime import datetime

import pytest

from zfsroot.core.config import Config
from zfsroot.core.exceptions import (
    AlreadyExistsError,
    BusyError,
    NotFoundError,
    ValidationError,
)
from zfsroot.services.context import BuildContext
from zfsroot.services.host import SimulatedHostState
from zfsroot.services.zfs import ZfsDriver
from zfsroot.utils.shell import RecordingExecutor

ROOT = "zroot/ROOT/noble"
MP = "/mnt/builds/noble"


def _driver(
    host: SimulatedHostState | None = None, *, dry_run: bool = False,
) -> tuple[ZfsDriver, RecordingExecutor, SimulatedHostState]:
    rec = RecordingExecutor()
    host = host if host is not None else SimulatedHostState().add_pool("zroot")
    cfg = Config(mount_base="/mnt/builds", snapshot_retain=2)
    ctx = BuildContext.from_config(cfg, dry_run=dry_run, inner=rec, host=host)
    return ZfsDriver(ctx), rec, host


def _ts(minute: int) -> datetime:
    return datetime(2025, 1, 1, 12, minute, 0)


class TestNaming:
    def test_conventions(self) -> None:
        ctx = BuildContext.from_config(Config(pool="tank", mount_base="/srv/b/"), dry_run=True)
        assert ctx.root_parent == "tank/ROOT"
        assert ctx.root_dataset("x") == "tank/ROOT/x"
        assert ctx.varlog_dataset("x") == "tank/ROOT/x/varlog"
        assert ctx.mount_point("x") == "/srv/b/x"
        assert ctx.varlog_mount_point("x") == "/srv/b/x/var/log"


class TestCreateRootDataset:
    def test_creates_parent_root_and_varlog(self) -> None:
        zfs, rec, host = _driver()
        assert zfs.create_root_dataset("noble") == ROOT
        assert rec.commands() == [
            "zfs create -o canmount=off -o mountpoint=none zroot/ROOT",
            f"zfs create -o canmount=noauto -o mountpoint=legacy {ROOT}",
            f"zfs create -o mountpoint=legacy {ROOT}/varlog",
        ]
        assert host.dataset_exists(f"{ROOT}/varlog")

    def test_existing_parent_reused(self) -> None:
        host = SimulatedHostState().add_pool("zroot").add_dataset("zroot/ROOT")
        zfs, rec, _ = _driver(host)
        zfs.create_root_dataset("noble")
        assert not any(c.endswith(" zroot/ROOT") for c in rec.commands())

    def test_second_call_already_exists_state_unchanged(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        before = copy.deepcopy(host)
        calls = len(rec.calls)

        with pytest.raises(AlreadyExistsError):
            zfs.create_root_dataset("noble")
        assert host == before
        assert len(rec.calls) == calls

    def test_cleanup_recreates_without_snapshots(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        zfs.create_snapshot(ROOT, "1-datasets-created", _ts(0))
        assert host.list_snapshots(ROOT)

        zfs.create_root_dataset("noble", cleanup=True)
        assert f"zfs destroy -f -r {ROOT}" in rec.commands()
        assert host.dataset_exists(ROOT)
        assert host.list_snapshots(ROOT) == []
        assert host.list_snapshots(f"{ROOT}/varlog") == []

    def test_cleanup_refuses_while_container_runs(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        host.note_machine_started("noble")
        calls = len(rec.calls)

        with pytest.raises(BusyError, match="noble"):
            zfs.create_root_dataset("noble", cleanup=True)
        assert host.dataset_exists(ROOT)
        assert len(rec.calls) == calls

    def test_missing_pool(self) -> None:
        zfs, rec, _ = _driver(SimulatedHostState())
        with pytest.raises(NotFoundError, match="zpool create"):
            zfs.create_root_dataset("noble")
        assert rec.calls == []

    def test_invalid_build_name(self) -> None:
        zfs, rec, _ = _driver()
        with pytest.raises(ValidationError):
            zfs.create_root_dataset("bad/name")
        assert rec.calls == []


class TestMount:
    def test_mount_and_idempotent(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        assert zfs.mount_root_dataset("noble") == MP
        assert f"mount -t zfs {ROOT} {MP}" in rec.commands()
        assert host.mounted_source(MP) == ROOT

        n = len(rec.calls)
        zfs.mount_root_dataset("noble")
        assert len(rec.calls) == n

    def test_mount_busy_with_other_source(self) -> None:
        zfs, _, host = _driver()
        zfs.create_root_dataset("noble")
        host.note_mounted("tmpfs", MP)
        with pytest.raises(BusyError):
            zfs.mount_root_dataset("noble")

    def test_mount_missing_dataset(self) -> None:
        zfs, _, _ = _driver()
        with pytest.raises(NotFoundError):
            zfs.mount_root_dataset("noble")

    def test_varlog_requires_mounted_root(self) -> None:
        zfs, _, _ = _driver()
        zfs.create_root_dataset("noble")
        with pytest.raises(NotFoundError, match="未挂载"):
            zfs.mount_varlog("noble")

    def test_varlog_moves_existing_content(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        zfs.mount_root_dataset("noble")
        host.add_content(f"{MP}/var/log/syslog").add_content(f"{MP}/var/log.old/stale")

        assert zfs.mount_varlog("noble") == f"{MP}/var/log"
        cmds = rec.commands()
        assert cmds.index(f"rm -rf {MP}/var/log.old") < cmds.index(f"mv {MP}/var/log {MP}/var/log.old")
        assert f"mount -t zfs {ROOT}/varlog {MP}/var/log" in cmds
        assert host.has_content(f"{MP}/var/log.old/syslog")
        assert not host.has_content(f"{MP}/var/log.old/stale")

    def test_varlog_idempotent(self) -> None:
        zfs, rec, _ = _driver()
        zfs.create_root_dataset("noble")
        zfs.mount_root_dataset("noble")
        zfs.mount_varlog("noble")
        n = len(rec.calls)
        zfs.mount_varlog("noble")
        assert len(rec.calls) == n

    def test_unmount(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        assert not zfs.unmount_root_dataset("noble")
        zfs.mount_root_dataset("noble")
        zfs.mount_varlog("noble")
        assert zfs.unmount_root_dataset("noble")
        assert f"umount -R {MP}" in rec.commands()
        assert not host.is_mountpoint(f"{MP}/var/log")

    def test_unmount_refuses_foreign_mount(self) -> None:
        zfs, _, host = _driver()
        zfs.create_root_dataset("noble")
        host.note_mounted("other/fs", MP)
        with pytest.raises(BusyError):
            zfs.unmount_root_dataset("noble")


class TestDestroy:
    def test_not_found(self) -> None:
        zfs, rec, _ = _driver()
        with pytest.raises(NotFoundError):
            zfs.destroy(ROOT)
        assert rec.calls == []

    def test_running_container_blocks(self) -> None:
        zfs, _, host = _driver()
        zfs.create_root_dataset("noble")
        host.note_machine_started("noble")
        with pytest.raises(BusyError, match="容器"):
            zfs.destroy_build("noble")
        assert host.dataset_exists(ROOT)

    def test_tool_failure_carries_stderr_and_hint(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        rec.fail("zfs destroy", stderr="cannot destroy: dataset is busy")
        with pytest.raises(BusyError) as exc:
            zfs.destroy(ROOT)
        assert "dataset is busy" in str(exc.value)
        assert "lsof" in str(exc.value)
        assert host.dataset_exists(ROOT)

    def test_unmounts_first(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        zfs.mount_root_dataset("noble")
        zfs.destroy_build("noble", force=True)
        cmds = rec.commands()
        assert cmds.index(f"umount -R {MP}") < cmds.index(f"zfs destroy -f -r {ROOT}")
        assert not host.dataset_exists(f"{ROOT}/varlog")


class TestPromoteAndList:
    def test_promote(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        zfs.mount_root_dataset("noble")
        zfs.promote_to_bootfs("noble")
        assert rec.commands()[-3:] == [
            f"zfs set canmount=noauto {ROOT}",
            f"zfs set mountpoint=/ {ROOT}",
            f"zpool set bootfs={ROOT} zroot",
        ]
        assert host.get_pool_property("zroot", "bootfs") == ROOT
        assert not host.is_mountpoint(MP)

    def test_list_root_datasets(self) -> None:
        zfs, _, _ = _driver()
        assert zfs.list_root_datasets() == []
        zfs.create_root_dataset("noble")
        zfs.create_root_dataset("jammy")
        zfs.mount_root_dataset("noble")
        infos = {i.build: i for i in zfs.list_root_datasets()}
        assert set(infos) == {"jammy", "noble"}
        assert infos["noble"].flags == "MOUNTED +varlog"
        assert infos["jammy"].flags == "+varlog"

    def test_dataset_info_missing(self) -> None:
        zfs, _, _ = _driver()
        assert zfs.dataset_info("noble") is None


class TestSnapshots:
    def test_create_recursive_with_timestamp(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        name = zfs.create_snapshot(ROOT, "1-datasets-created", _ts(5))
        assert name == f"{ROOT}@build-stage-1-datasets-created-20250101-120500"
        assert rec.commands()[-1] == f"zfs snapshot -r {name}"
        assert host.snapshot_exists(f"{ROOT}/varlog@build-stage-1-datasets-created-20250101-120500")

    def test_duplicate_is_noop(self) -> None:
        zfs, rec, _ = _driver()
        zfs.create_root_dataset("noble")
        zfs.create_snapshot(ROOT, "x", _ts(1))
        n = len(rec.calls)
        zfs.create_snapshot(ROOT, "x", _ts(1))
        assert len(rec.calls) == n

    def test_missing_dataset_or_label(self) -> None:
        zfs, _, _ = _driver()
        with pytest.raises(NotFoundError):
            zfs.create_snapshot(ROOT, "x")
        zfs.create_root_dataset("noble")
        with pytest.raises(ValidationError):
            zfs.create_snapshot(ROOT, "")

    def test_list_newest_first_and_find(self) -> None:
        zfs, _, _ = _driver()
        zfs.create_root_dataset("noble")
        a = zfs.create_snapshot(ROOT, "1-datasets-created", _ts(1))
        b = zfs.create_snapshot(ROOT, "2-root-mounted", _ts(2))
        c = zfs.create_snapshot(ROOT, "1-datasets-created", _ts(3))
        assert zfs.list_snapshots(ROOT) == [c, b, a]
        assert zfs.list_snapshots(ROOT, "root-mounted") == [b]
        assert zfs.find_stage_snapshot(ROOT, "1-datasets-created") == c
        assert zfs.find_stage_snapshot(ROOT, "3-os-installed") is None

    def test_rollback_missing_is_not_destructive(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        zfs.create_snapshot(ROOT, "1-datasets-created", _ts(1))
        before = copy.deepcopy(host)
        n = len(rec.calls)

        with pytest.raises(NotFoundError):
            zfs.rollback_snapshot(f"{ROOT}@does-not-exist")
        assert len(rec.calls) == n
        assert host == before

    def test_rollback_invalid_name(self) -> None:
        zfs, _, _ = _driver()
        with pytest.raises(ValidationError):
            zfs.rollback_snapshot("no-at-sign")

    def test_rollback_discards_newer(self) -> None:
        zfs, rec, host = _driver()
        zfs.create_root_dataset("noble")
        a = zfs.create_snapshot(ROOT, "1-datasets-created", _ts(1))
        b = zfs.create_snapshot(ROOT, "2-root-mounted", _ts(2))
        zfs.rollback_snapshot(a, force=True)
        assert rec.commands()[-1] == f"zfs rollback -r -f {a}"
        assert not host.snapshot_exists(b)
        assert host.snapshot_exists(a)

    def test_rollback_to_stage(self) -> None:
        zfs, _, _ = _driver()
        zfs.create_root_dataset("noble")
        a = zfs.create_snapshot(ROOT, "1-datasets-created", _ts(1))
        assert zfs.rollback_to_stage("noble", "1-datasets-created") == a
        with pytest.raises(NotFoundError):
            zfs.rollback_to_stage("noble", "4-varlog-mounted")

    def test_cleanup_keeps_newest(self) -> None:
        zfs, _, host = _driver()
        zfs.create_root_dataset("noble")
        snaps = [zfs.create_snapshot(ROOT, "3-os-installed", _ts(i)) for i in range(4)]
        other = zfs.create_snapshot(ROOT, "4-varlog-mounted", _ts(10))

        removed = zfs.cleanup_snapshots(ROOT, "3-os-installed")
        assert removed == [snaps[1], snaps[0]]
        assert zfs.list_snapshots(ROOT) == [other, snaps[3], snaps[2]]
        assert not host.snapshot_exists(snaps[0].replace(ROOT, f"{ROOT}/varlog"))

    def test_cleanup_invalid_keep(self) -> None:
        zfs, _, _ = _driver()
        with pytest.raises(ValidationError):
            zfs.cleanup_snapshots(ROOT, keep=-1)


class TestDryRun:
    def test_dry_run_updates_simulation_only(self) -> None:
        zfs, rec, host = _driver(dry_run=True)
        zfs.create_root_dataset("noble")
        zfs.mount_root_dataset("noble")
        assert rec.calls == []
        assert host.mounted_source(MP) == ROOT
