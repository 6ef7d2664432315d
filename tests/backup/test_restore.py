"""Tests for restore replay against the simulated backup tool."""

import pytest

from conftest import FakeClock

from openemr_ops.backup.agent import BackupAgent
from openemr_ops.backup.identifiers import ArtifactSet
from openemr_ops.backup.manifest import BackupCatalog
from openemr_ops.backup.restore import RestoreReplayer
from openemr_ops.core.errors import ManifestError, RestoreError

HOUR = 3600


@pytest.fixture
def agent(backup_settings, backup_tool):
    return BackupAgent(backup_settings, tool=backup_tool, clock=FakeClock())


@pytest.fixture
def replayer(backup_settings, backup_tool):
    return RestoreReplayer(backup_settings, backup_tool, BackupCatalog(backup_settings.target_dir))


def backup_states(agent, tool, *states):
    reports = []
    for state in states:
        tool.state = dict(state)
        reports.append(agent.run())
        agent.clock.advance(HOUR)
    return reports


@pytest.fixture
def chain(agent, backup_tool):
    return backup_states(
        agent,
        backup_tool,
        {"patients": "1", "forms": "1"},
        {"patients": "2", "forms": "1", "notes": "1"},
        {"patients": "2", "notes": "2"},
    )


class TestReplay:
    def test_final_state_matches_last_backup(self, chain, replayer, backup_tool):
        backup_tool.state = {"patients": "999"}
        report = replayer.run()
        assert report.completed
        assert report.applied == [r.backup_id for r in chain]
        assert backup_tool.restored_state() == {"patients": "2", "notes": "2"}

    def test_replay_order(self, chain, replayer, backup_tool):
        backup_tool.calls.clear()
        replayer.run()
        names = [f"{r.backup_id}.gz" for r in chain]
        assert backup_tool.calls == [
            ("extract", names[0]),
            ("prepare", "full"),
            ("extract", names[1]),
            ("prepare", "incremental"),
            ("extract", names[2]),
            ("prepare", "incremental"),
            ("copy_back", "full"),
        ]

    def test_workdir_cleaned_after_completion(self, chain, replayer, backup_settings):
        backup_settings.workdir.mkdir()
        (backup_settings.workdir / "stale").write_text("old run")
        replayer.run()
        assert not backup_settings.workdir.exists()

    def test_datadir_wiped_including_dotfiles(self, chain, replayer, backup_settings):
        datadir = backup_settings.datadir
        datadir.mkdir(exist_ok=True)
        (datadir / "ibdata1").write_text("old")
        (datadir / ".hidden").write_text("old")
        (datadir / "openemr").mkdir()
        replayer.run()
        assert sorted(p.name for p in datadir.iterdir()) == ["db.json"]

    def test_explicit_manifest(self, agent, backup_tool, replayer):
        first_cycle = backup_states(agent, backup_tool, {"v": "1"}, {"v": "2"}, {"v": "3"})
        backup_states(agent, backup_tool, {"v": "4"})

        report = replayer.run(first_cycle[0].manifest.name)
        assert report.manifest == first_cycle[0].manifest.name
        assert backup_tool.restored_state() == {"v": "3"}

    def test_explicit_manifest_by_identifier(self, chain, replayer):
        plan = replayer.select(str(chain[0].backup_id))
        assert plan.final == chain[-1].backup_id


class TestHealthcheckSidecar:
    def test_restored_from_final_entry(self, agent, backup_tool, backup_settings, replayer):
        backup_settings.datadir.mkdir()
        for version in ("v1", "v2"):
            backup_settings.healthcheck_file.write_text(version)
            backup_states(agent, backup_tool, {"v": version})

        report = replayer.run()
        assert report.healthcheck_restored
        assert backup_settings.healthcheck_file.read_text() == "v2"

    def test_absent_sidecar(self, chain, replayer, backup_settings):
        report = replayer.run()
        assert not report.healthcheck_restored
        assert not backup_settings.healthcheck_file.exists()


class TestDryRun:
    def test_datadir_untouched(self, chain, replayer, backup_tool, backup_settings):
        datadir = backup_settings.datadir
        datadir.mkdir(exist_ok=True)
        (datadir / "ibdata1").write_text("live")

        report = replayer.run(dry_run=True)

        assert report.dry_run
        assert not report.completed
        assert len(report.applied) == 3
        assert sorted(p.name for p in datadir.iterdir()) == ["ibdata1"]
        assert ("copy_back", "full") not in backup_tool.calls

    def test_prepared_data_kept(self, chain, replayer):
        replayer.run(dry_run=True)
        assert (replayer.full_dir / "state.json").is_file()
        assert not replayer.partial_dir.exists()


class TestFailures:
    def test_no_manifest(self, replayer):
        with pytest.raises(ManifestError, match="autodetect"):
            replayer.run()

    def test_unknown_manifest(self, chain, replayer):
        with pytest.raises(ManifestError):
            replayer.run("2020-01-01-00-00-00.manifest")

    def test_missing_artifact_detected_before_anything_runs(
        self, chain, replayer, backup_tool, backup_settings
    ):
        ArtifactSet(backup_settings.target_dir, chain[1].backup_id).artifact.unlink()
        backup_tool.calls.clear()
        with pytest.raises(RestoreError) as exc_info:
            replayer.run()
        assert exc_info.value.context["missing"] == [str(chain[1].backup_id)]
        assert backup_tool.calls == []

    def test_empty_manifest(self, replayer, backup_settings):
        (backup_settings.target_dir / "2024-05-01-02-00-00.manifest").write_text("")
        with pytest.raises(ManifestError, match="empty"):
            replayer.run()

    def test_corrupt_artifact(self, chain, replayer, backup_settings):
        ArtifactSet(backup_settings.target_dir, chain[2].backup_id).artifact.write_bytes(b"garbage")
        with pytest.raises(RestoreError):
            replayer.run()
        assert not (backup_settings.datadir / "db.json").exists()
