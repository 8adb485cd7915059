"""阶段状态机测试"""

from __future__ import annotations

import itertools

import pytest

from zfsroot.core.exceptions import StageOrderError
from zfsroot.core.models import STAGE_ORDER, Status, snapshot_label
from zfsroot.core.stages import (
    FIRST_STAGE,
    next_stage,
    require_admission,
    resume_from,
    should_run,
    stage_index,
)


class TestNextStage:
    def test_chain_reaches_completed(self) -> None:
        st: Status | None = Status.STARTED
        for _ in range(len(STAGE_ORDER) - 1):
            st = next_stage(st)
        assert st is Status.COMPLETED
        assert next_stage(st) is None

    def test_linear_successor(self) -> None:
        assert next_stage(Status.STARTED) is Status.DATASETS_CREATED
        assert next_stage(Status.ROOT_MOUNTED) is Status.OS_INSTALLED
        assert next_stage(Status.ANSIBLE_CONFIGURED) is Status.COMPLETED

    @pytest.mark.parametrize("current", [None, Status.FAILED, Status.COMPLETED])
    def test_no_successor(self, current: Status | None) -> None:
        assert next_stage(current) is None


class TestShouldRun:
    """准入真值表"""

    def test_strictly_next_for_all_pairs(self) -> None:
        for requested, current in itertools.product(STAGE_ORDER, list(Status)):
            expected = requested == next_stage(current)
            assert should_run(requested, current) is expected, (requested, current)

    def test_no_status_allows_only_first(self) -> None:
        assert should_run(FIRST_STAGE, None)
        for st in STAGE_ORDER[1:]:
            assert not should_run(st, None)

    def test_force_restart_always_allowed(self) -> None:
        for requested, current in itertools.product(STAGE_ORDER, [None, *Status]):
            assert should_run(requested, current, force_restart=True)

    def test_no_repeat_no_skip(self) -> None:
        assert not should_run(Status.OS_INSTALLED, Status.OS_INSTALLED)
        assert not should_run(Status.VARLOG_MOUNTED, Status.ROOT_MOUNTED)


class TestAdmission:
    def test_admitted(self) -> None:
        require_admission(Status.ROOT_MOUNTED, Status.DATASETS_CREATED)

    def test_rejected_names_expected_stage(self) -> None:
        with pytest.raises(StageOrderError, match="root-mounted"):
            require_admission(Status.OS_INSTALLED, Status.DATASETS_CREATED)

    def test_failed_has_no_successor(self) -> None:
        with pytest.raises(StageOrderError, match="没有后继"):
            require_admission(Status.STARTED, Status.FAILED)

    def test_failed_with_force(self) -> None:
        require_admission(Status.STARTED, Status.FAILED, force_restart=True)


class TestResumeFrom:
    def test_fresh(self) -> None:
        assert resume_from(None) is Status.STARTED

    def test_resume_after_os_installed(self) -> None:
        assert resume_from(Status.OS_INSTALLED) is Status.VARLOG_MOUNTED

    def test_terminal(self) -> None:
        assert resume_from(Status.COMPLETED) is None
        assert resume_from(Status.FAILED) is None

    def test_force(self) -> None:
        assert resume_from(Status.FAILED, force_restart=True) is Status.STARTED
        assert resume_from(Status.COMPLETED, force_restart=True) is Status.STARTED


class TestStageHelpers:
    def test_stage_index(self) -> None:
        assert stage_index(Status.STARTED) == 0
        assert stage_index(Status.COMPLETED) == 7
        assert stage_index(Status.FAILED) == -1

    def test_snapshot_label(self) -> None:
        assert snapshot_label(Status.DATASETS_CREATED) == "1-datasets-created"
        assert snapshot_label(Status.OS_INSTALLED) == "3-os-installed"

    def test_parse(self) -> None:
        assert Status.parse("varlog-mounted") is Status.VARLOG_MOUNTED
        assert Status.parse("bogus") is None
