"""Tests for the mariadb-backup adapter."""

import gzip
import shutil

import pytest

from conftest import Scripted

from openemr_ops.backup.tool import BackupTool, MariaBackupTool
from openemr_ops.core.errors import BackupPipelineError, RestoreError


@pytest.fixture
def tool(backup_settings, runner):
    return MariaBackupTool(backup_settings, runner)


def test_satisfies_protocol(tool, backup_tool):
    assert isinstance(tool, BackupTool)
    assert isinstance(backup_tool, BackupTool)


class TestBackupArgv:
    def test_full(self, tool, backup_settings, tmp_path):
        argv = tool.backup_argv(tmp_path / "a-lsn")
        assert argv == [
            "mariadb-backup",
            f"--defaults-extra-file={backup_settings.credentials_file}",
            "--backup",
            "--stream=xbstream",
            f"--extra-lsndir={tmp_path / 'a-lsn'}",
        ]

    def test_incremental(self, tool, tmp_path):
        argv = tool.backup_argv(tmp_path / "b-lsn", tmp_path / "a-lsn")
        assert f"--incremental-basedir={tmp_path / 'a-lsn'}" in argv
        assert argv.index("--stream=xbstream") < argv.index(f"--extra-lsndir={tmp_path / 'b-lsn'}")


@pytest.mark.skipif(shutil.which("echo") is None, reason="needs echo")
def test_stream_is_compressed(backup_settings, tmp_path):
    tool = MariaBackupTool(backup_settings.model_copy(update={"backup_binary": "echo"}))
    destination = tmp_path / "out.gz"
    tool.stream_backup(destination, tmp_path / "lsn")
    with gzip.open(destination, "rt") as handle:
        assert "--backup --stream=xbstream" in handle.read()


@pytest.mark.skipif(shutil.which("false") is None, reason="needs false")
def test_stream_failure_status(backup_settings, tmp_path):
    tool = MariaBackupTool(backup_settings.model_copy(update={"backup_binary": "false"}))
    with pytest.raises(BackupPipelineError, match="exited with status 1"):
        tool.stream_backup(tmp_path / "out.gz", tmp_path / "lsn")


def test_stream_missing_binary(backup_settings, tmp_path):
    tool = MariaBackupTool(
        backup_settings.model_copy(update={"backup_binary": str(tmp_path / "no-such-tool")})
    )
    with pytest.raises(BackupPipelineError, match="Cannot start"):
        tool.stream_backup(tmp_path / "out.gz", tmp_path / "lsn")


class TestPrepare:
    def test_full_prepare(self, tool, runner, tmp_path):
        tool.prepare(tmp_path / "full")
        assert runner.calls == [["mariadb-backup", "--prepare", f"--target-dir={tmp_path / 'full'}"]]

    def test_incremental_prepare(self, tool, runner, tmp_path):
        tool.prepare(tmp_path / "full", tmp_path / "partial")
        assert runner.calls[0][-1] == f"--incremental-dir={tmp_path / 'partial'}"

    def test_copy_back_targets_datadir(self, tool, runner, backup_settings, tmp_path):
        tool.copy_back(tmp_path / "full")
        assert f"--datadir={backup_settings.datadir}" in runner.calls[0]

    def test_failure_is_restore_error(self, tool, runner, tmp_path):
        runner.on("mariadb-backup", Scripted(returncode=1, stderr="InnoDB: corrupt"))
        with pytest.raises(RestoreError) as exc_info:
            tool.prepare(tmp_path / "full")
        assert exc_info.value.context["argv"][1] == "--prepare"
