"""Tests for backup identifiers and artifact naming."""

from datetime import datetime

import pytest

from conftest import FakeClock

from openemr_ops.backup.identifiers import ArtifactSet, BackupId


class TestBackupId:
    def test_parse_and_format(self):
        backup_id = BackupId.parse("2024-05-01-02-00-00")
        assert backup_id.moment == datetime(2024, 5, 1, 2, 0, 0)
        assert str(backup_id) == "2024-05-01-02-00-00"

    @pytest.mark.parametrize(
        "text", ["2024-5-1-2-0-0", "2024-05-01", "2024-05-01-02-00-00.gz", "2024-13-01-02-00-00"]
    )
    def test_rejects_non_canonical(self, text):
        with pytest.raises(ValueError):
            BackupId.parse(text)

    def test_ordering_is_chronological(self):
        ids = [BackupId.parse(t) for t in ("2024-12-31-23-59-59", "2024-01-02-00-00-00", "2025-01-01-00-00-00")]
        assert [str(i) for i in sorted(ids)] == [
            "2024-01-02-00-00-00",
            "2024-12-31-23-59-59",
            "2025-01-01-00-00-00",
        ]

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("2024-05-01-02-00-00.gz", "2024-05-01-02-00-00"),
            ("2024-05-01-02-00-00-lsn", "2024-05-01-02-00-00"),
            ("2024-05-01-02-00-00.manifest", "2024-05-01-02-00-00"),
            ("2024-05-01-02-00-00.my-healthcheck.cnf", "2024-05-01-02-00-00"),
            ("2024-05-01-02-00-001.gz", None),
            ("lost+found", None),
            ("README", None),
        ],
    )
    def test_from_name(self, name, expected):
        parsed = BackupId.from_name(name)
        assert (str(parsed) if parsed else None) == expected

    def test_now_truncates_to_seconds(self):
        clock = FakeClock(start=1714528800.75)
        assert BackupId.now(clock).moment == datetime.fromtimestamp(1714528800)


def test_artifact_set_paths(tmp_path):
    artifacts = ArtifactSet(tmp_path, BackupId.parse("2024-05-01-02-00-00"))
    assert artifacts.artifact.name == "2024-05-01-02-00-00.gz"
    assert artifacts.lsn_dir.name == "2024-05-01-02-00-00-lsn"
    assert artifacts.healthcheck.name == "2024-05-01-02-00-00.my-healthcheck.cnf"
    assert artifacts.manifest.name == "2024-05-01-02-00-00.manifest"
    assert not artifacts.exists()
    artifacts.lsn_dir.mkdir()
    assert artifacts.exists()
