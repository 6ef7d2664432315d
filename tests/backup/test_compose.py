"""Tests for stopping the compose project around a restore."""

import pytest

from conftest import Scripted

from openemr_ops.backup.compose import compose_argv, stopped_services
from openemr_ops.core.errors import CommandError


def test_compose_argv():
    assert compose_argv("openemr", "start") == ["docker", "compose", "-p", "openemr", "start"]


def test_stop_then_start(runner):
    with stopped_services("openemr", runner=runner, timeout=30):
        assert runner.calls == [["docker", "compose", "-p", "openemr", "stop", "--timeout", "30"]]
    assert runner.calls[-1] == ["docker", "compose", "-p", "openemr", "start"]


def test_start_runs_after_failure(runner):
    with pytest.raises(RuntimeError):
        with stopped_services("openemr", runner=runner):
            raise RuntimeError("restore failed")
    assert runner.calls[-1][-1] == "start"
    assert len(runner.calls) == 2


def test_failed_stop_skips_block(runner):
    runner.on("docker", Scripted(returncode=1, stderr="no such project"))
    entered = False
    with pytest.raises(CommandError):
        with stopped_services("openemr", runner=runner):
            entered = True
    assert not entered
    assert len(runner.calls) == 1


def test_failed_start_does_not_mask_block_error(runner):
    runner.on("docker", Scripted(), Scripted(returncode=1, stderr="daemon gone"))
    with pytest.raises(RuntimeError, match="restore failed"):
        with stopped_services("openemr", runner=runner):
            raise RuntimeError("restore failed")
    assert runner.calls[-1][-1] == "start"


def test_failed_start_after_success_raises(runner):
    runner.on("docker", Scripted(), Scripted(returncode=1, stderr="daemon gone"))
    with pytest.raises(CommandError):
        with stopped_services("openemr", runner=runner):
            pass
