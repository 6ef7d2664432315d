"""Tests for settings loading and KEY=value file parsing."""

import pytest

from openemr_ops.backup.settings import BackupSettings
from openemr_ops.core.errors import ConfigError
from openemr_ops.core.settings import layered_environ, load_settings, parse_env_file


class TestParseEnvFile:
    def test_parses_shell_style_lines(self, tmp_path):
        path = tmp_path / "properties"
        path.write_text(
            "# backup client\n"
            "\n"
            "BACKUPVOLUME_TARGET=/backups\n"
            "export INCREMENTALS=6\n"
            "CYCLES_TO_KEEP='3'\n"
            'PROJECT="openemr prod"\n'
            "DATADIR=/var/lib/mysql # live data\n"
            "not a variable line\n"
        )
        assert parse_env_file(path) == {
            "BACKUPVOLUME_TARGET": "/backups",
            "INCREMENTALS": "6",
            "CYCLES_TO_KEEP": "3",
            "PROJECT": "openemr prod",
            "DATADIR": "/var/lib/mysql",
        }

    def test_quoted_hash_is_kept(self, tmp_path):
        path = tmp_path / "secrets"
        path.write_text('MARIADB_ROOT_PASSWORD="p#ss word"\n')
        assert parse_env_file(path)["MARIADB_ROOT_PASSWORD"] == "p#ss word"


class TestLayeredEnviron:
    def test_files_layer_in_order_under_environment(self, tmp_path):
        first = tmp_path / "properties"
        first.write_text("A=file1\nB=file1\n")
        second = tmp_path / "secrets"
        second.write_text("B=file2\n")
        merged = layered_environ(first, second, tmp_path / "missing", environ={"A": "env", "C": "env"})
        assert merged == {"A": "env", "B": "file2", "C": "env"}

    def test_same_precedence_as_settings(self, tmp_path, monkeypatch):
        props = tmp_path / "properties"
        props.write_text(f"BACKUPVOLUME_TARGET={tmp_path}\nINCREMENTALS=4\n")
        monkeypatch.delenv("BACKUPVOLUME_TARGET", raising=False)
        monkeypatch.setenv("INCREMENTALS", "9")
        settings = load_settings(BackupSettings, _env_file=props)
        assert settings.incrementals == 9
        assert layered_environ(props)["INCREMENTALS"] == "9"


class TestLoadSettings:
    def test_validation_error_becomes_config_error(self, tmp_path, monkeypatch):
        monkeypatch.delenv("BACKUPVOLUME_TARGET", raising=False)
        with pytest.raises(ConfigError) as exc_info:
            load_settings(BackupSettings, _env_file=tmp_path / "absent")
        assert "backupvolume_target" in exc_info.value.message

    def test_reads_properties_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("INCREMENTALS", raising=False)
        props = tmp_path / "properties"
        props.write_text(f"BACKUPVOLUME_TARGET={tmp_path}\nINCREMENTALS=4\nUNRELATED=1\n")
        settings = load_settings(BackupSettings, _env_file=props)
        assert settings.target_dir == tmp_path
        assert settings.incrementals == 4
        assert settings.cycles_to_keep == 3

    def test_out_of_range_rejected(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(BackupSettings, backupvolume_target=tmp_path, incrementals=0)
