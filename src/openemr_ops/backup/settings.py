"""Backup client configuration.

Values come from the environment and from the client's ``properties``
file (``KEY=value`` lines, the same file the backup container sources).
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from openemr_ops.core.settings import OpsBaseSettings

HEALTHCHECK_FILE = ".my-healthcheck.cnf"


class BackupSettings(OpsBaseSettings):
    """Settings for the backup chain manager.

    Fields
    ──────
    backupvolume_target : directory holding manifests and artifacts
    incrementals        : manifest length at which a new cycle starts
    cycles_to_keep      : newest manifests kept by pruning
    datadir             : live database directory (restore target)
    workdir             : scratch directory for restore preparation
    """

    model_config = SettingsConfigDict(
        env_file="properties",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backupvolume_target: Path
    incrementals: int = Field(default=6, ge=1)
    cycles_to_keep: int = Field(default=3, ge=1)

    datadir: Path = Path("/var/lib/mysql")
    workdir: Path = Path("/tmp/work")
    credentials_file: Path = Path("root-credentials.conf")
    datadir_owner: str = Field(default="mysql:mysql", description="chown target; empty skips")

    backup_binary: str = "mariadb-backup"
    mbstream_binary: str = "mbstream"
    compression_level: int = Field(default=6, ge=1, le=9)

    # Restore wrapper
    project: str = Field(default="", description="docker compose project to stop during restore")
    stop_timeout: int = Field(default=60, ge=0)

    @property
    def target_dir(self) -> Path:
        return self.backupvolume_target

    @property
    def healthcheck_file(self) -> Path:
        return self.datadir / HEALTHCHECK_FILE
