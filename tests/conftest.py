"""
Shared pytest fixtures and configuration for openemr-ops tests.

This module provides:
- FakeClock: deterministic time and sleep
- RecordingRunner: scriptable stand-in for CommandRunner
- FakeBackupTool: simulated database whose backups are real gzip files
- Settings fixtures rooted in tmp_path

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments.

    def test_something(clock, runner, coordinator_settings):
        ...
"""

from __future__ import annotations

import gzip
import json
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

# Ensure openemr_ops is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from openemr_ops.backup.settings import BackupSettings
from openemr_ops.coordination.markers import MemoryMarkerStore
from openemr_ops.coordination.settings import CoordinatorSettings
from openemr_ops.core.errors import BackupPipelineError, CommandError, RestoreError
from openemr_ops.core.process import CommandOutcome

START_TIME = 1_714_528_800.0  # 2024-05-01 02:00:00 UTC


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path) or "lifecycle" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self.on_sleep: Callable[[float], None] | None = None

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(seconds)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def slept(self) -> float:
        return sum(self.sleeps)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryMarkerStore:
    return MemoryMarkerStore(clock)


# =============================================================================
# Command runner
# =============================================================================


@dataclass
class Scripted:
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    effect: Callable[[list[str]], None] | None = None
    raises: bool = False


@dataclass
class RecordingRunner:
    """Records every argv; programs answer per ``on()`` scripting (default: exit 0).

    A program is matched against the base name of ``argv[0]`` and ``argv[1]``
    so ``sh /root/fsupgrade-4.sh`` can be scripted as ``"fsupgrade-4.sh"``.
    """

    calls: list[list[str]] = field(default_factory=list)
    scripts: dict[str, list[Scripted]] = field(default_factory=dict)
    cwds: list[Any] = field(default_factory=list)

    def on(self, program: str, *responses: Scripted) -> RecordingRunner:
        self.scripts[program] = list(responses) or [Scripted()]
        return self

    def _lookup(self, argv: list[str]) -> Scripted:
        names = [Path(arg).name for arg in argv[:2]]
        for program, responses in self.scripts.items():
            if program in names:
                return responses.pop(0) if len(responses) > 1 else responses[0]
        return Scripted()

    def run(self, argv, *, env=None, input=None, cwd=None, check=False, timeout=None):
        argv = list(argv)
        self.calls.append(argv)
        self.cwds.append(cwd)
        scripted = self._lookup(argv)
        if scripted.raises:
            raise CommandError(argv, -1, "No such file or directory")
        if scripted.effect is not None:
            scripted.effect(argv)
        outcome = CommandOutcome(argv, scripted.returncode, scripted.stdout, scripted.stderr)
        if check and not outcome.ok:
            raise CommandError(argv, outcome.returncode, outcome.stderr)
        return outcome

    def programs(self) -> list[str]:
        return [Path(argv[0]).name for argv in self.calls]

    def ran(self, program: str) -> bool:
        return any(program in [Path(a).name for a in argv[:2]] for argv in self.calls)


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


# =============================================================================
# Coordinator settings
# =============================================================================


SQLCONF_CONFIGURED = "<?php\n$host = 'mysql';\n$config = 1; /////////////\n"
SQLCONF_FRESH = "<?php\n$host = '';\n$config = 0; /////////////\n"


def write_sqlconf(settings: CoordinatorSettings, configured: bool = True) -> None:
    settings.default_site_dir.mkdir(parents=True, exist_ok=True)
    settings.sqlconf_path.write_text(SQLCONF_CONFIGURED if configured else SQLCONF_FRESH)


def make_coordinator_settings(root: Path, **overrides: Any) -> CoordinatorSettings:
    values: dict[str, Any] = dict(
        oe_root=root / "openemr",
        image_version_file=root / "image" / "docker-version",
        upgrade_script_dir=root / "image",
        swarm_pieces_dir=root / "swarm-pieces",
        ssl_dir=root / "ssl",
        webserver_cert=root / "ssl" / "certs" / "webserver.cert.pem",
        webserver_key=root / "ssl" / "private" / "webserver.key.pem",
        certs_source_dir=root / "certs",
        php_conf_dir=root / "php" / "conf.d",
        container_state_dir=root / "state",
        instance_ready_file=root / "state" / "instance-swarm-ready",
        instance_id="web-1",
        mysql_host="mysql",
        mysql_root_pass="rootpass",
        leader_timeout=300,
        leader_wait_timeout=600,
        leader_poll_interval=10,
        install_max_attempts=5,
        db_wait_attempts=3,
    )
    values.update(overrides)
    settings = CoordinatorSettings(**values)
    settings.sites_dir.mkdir(parents=True, exist_ok=True)
    settings.image_version_file.parent.mkdir(parents=True, exist_ok=True)
    return settings


@pytest.fixture
def coordinator_settings(tmp_path: Path) -> CoordinatorSettings:
    return make_coordinator_settings(tmp_path)


# =============================================================================
# Backup
# =============================================================================


class FakeBackupTool:
    """Simulated database: ``state`` is the live content.

    Artifacts are genuine gzip files holding JSON: a full snapshot, or a
    delta against the state recorded in the base LSN directory. ``prepare``
    and ``copy_back`` rebuild the state the same way a real tool would, so
    restores can be checked end to end.
    """

    def __init__(self, datadir: Path) -> None:
        self.datadir = datadir
        self.state: dict[str, str] = {}
        self.fail_next = False
        self.calls: list[tuple[str, str]] = []

    # backup ------------------------------------------------------------

    def stream_backup(self, destination: Path, lsn_dir: Path, incremental_basedir: Path | None = None):
        self.calls.append(("backup", destination.name))
        if self.fail_next:
            self.fail_next = False
            destination.write_bytes(b"\x1f\x8b partial")
            (lsn_dir / "xtrabackup_checkpoints").write_text("torn")
            raise BackupPipelineError("mariadb-backup exited with status 1")

        if incremental_basedir is None:
            payload = {"type": "full", "state": dict(self.state)}
        else:
            base = json.loads((incremental_basedir / "checkpoint.json").read_text())
            payload = {
                "type": "incremental",
                "set": {k: v for k, v in self.state.items() if base.get(k) != v},
                "delete": sorted(set(base) - set(self.state)),
            }
        with gzip.open(destination, "wt", encoding="utf-8") as out:
            json.dump(payload, out)
        (lsn_dir / "checkpoint.json").write_text(json.dumps(self.state))

    # restore -----------------------------------------------------------

    def extract(self, artifact: Path, target: Path) -> None:
        self.calls.append(("extract", artifact.name))
        target.mkdir(parents=True, exist_ok=True)
        try:
            with gzip.open(artifact, "rt", encoding="utf-8") as source:
                payload = source.read()
        except OSError as exc:
            raise RestoreError(f"Cannot decompress {artifact.name}", cause=exc) from exc
        (target / "payload.json").write_text(payload)

    def prepare(self, target: Path, incremental_dir: Path | None = None) -> None:
        self.calls.append(("prepare", "incremental" if incremental_dir else "full"))
        if incremental_dir is None:
            payload = json.loads((target / "payload.json").read_text())
            (target / "state.json").write_text(json.dumps(payload["state"]))
            return
        state = json.loads((target / "state.json").read_text())
        delta = json.loads((incremental_dir / "payload.json").read_text())
        state.update(delta["set"])
        for key in delta["delete"]:
            state.pop(key, None)
        (target / "state.json").write_text(json.dumps(state))

    def copy_back(self, target: Path) -> None:
        self.calls.append(("copy_back", target.name))
        self.datadir.mkdir(parents=True, exist_ok=True)
        (self.datadir / "db.json").write_text((target / "state.json").read_text())

    def restored_state(self) -> dict[str, str]:
        return json.loads((self.datadir / "db.json").read_text())


@pytest.fixture
def backup_settings(tmp_path: Path) -> BackupSettings:
    target = tmp_path / "backups"
    target.mkdir()
    return BackupSettings(
        backupvolume_target=target,
        incrementals=3,
        cycles_to_keep=2,
        datadir=tmp_path / "mysql",
        workdir=tmp_path / "work",
        credentials_file=tmp_path / "root-credentials.conf",
        datadir_owner="",
    )


@pytest.fixture
def backup_tool(backup_settings: BackupSettings) -> FakeBackupTool:
    return FakeBackupTool(backup_settings.datadir)
