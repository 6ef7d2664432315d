"""
Backup identifiers and artifact naming.

A backup is identified by its creation time, written as
``YYYY-MM-DD-HH-MM-SS``. Every field is zero-padded and the width is fixed,
so for identifiers the lexicographic order of the text equals chronological
order. Code in this package never relies on that: identifiers are parsed
into :class:`BackupId` and compared as datetimes. The fixed width matters
to operators listing the backup directory and to older tooling that sorts
file names.

Per identifier the backup directory holds::

    <id>.gz                  compressed xbstream
    <id>-lsn/                LSN metadata (incremental base for the next backup)
    <id>.my-healthcheck.cnf  health-check credentials snapshot (optional)
    <id>.manifest            only for the first backup of a cycle
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from openemr_ops.core.clock import Clock, SystemClock

ID_FORMAT = "%Y-%m-%d-%H-%M-%S"
_ID_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2})(?=$|[.\-])")
_ID_EXACT = re.compile(r"^\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2}$")

MANIFEST_SUFFIX = ".manifest"
ARTIFACT_SUFFIX = ".gz"
LSN_SUFFIX = "-lsn"
HEALTHCHECK_SUFFIX = ".my-healthcheck.cnf"


@dataclass(frozen=True, order=True, slots=True)
class BackupId:
    """Timestamp identifying one backup.

    Examples:
        >>> BackupId.parse("2024-05-01-02-00-00") < BackupId.parse("2024-05-01-02-00-01")
        True
        >>> str(BackupId.from_name("2024-05-01-02-00-00-lsn"))
        '2024-05-01-02-00-00'
    """

    moment: datetime

    @classmethod
    def parse(cls, text: str) -> BackupId:
        """Parse the canonical form. Raises ``ValueError`` otherwise."""
        text = text.strip()
        if not _ID_EXACT.match(text):
            raise ValueError(f"Not a backup identifier: {text!r}")
        return cls(datetime.strptime(text, ID_FORMAT))

    @classmethod
    def now(cls, clock: Clock | None = None) -> BackupId:
        clock = clock or SystemClock()
        return cls(datetime.fromtimestamp(int(clock.time())))

    @classmethod
    def from_name(cls, name: str) -> BackupId | None:
        """Identifier prefix of a backup directory entry, or None."""
        match = _ID_PREFIX.match(name)
        if not match:
            return None
        try:
            return cls.parse(match.group(1))
        except ValueError:
            return None

    def __str__(self) -> str:
        return self.moment.strftime(ID_FORMAT)


@dataclass(frozen=True, slots=True)
class ArtifactSet:
    """Paths belonging to one backup identifier."""

    target_dir: Path
    backup_id: BackupId

    @property
    def artifact(self) -> Path:
        return self.target_dir / f"{self.backup_id}{ARTIFACT_SUFFIX}"

    @property
    def lsn_dir(self) -> Path:
        return self.target_dir / f"{self.backup_id}{LSN_SUFFIX}"

    @property
    def healthcheck(self) -> Path:
        return self.target_dir / f"{self.backup_id}{HEALTHCHECK_SUFFIX}"

    @property
    def manifest(self) -> Path:
        return self.target_dir / f"{self.backup_id}{MANIFEST_SUFFIX}"

    def exists(self) -> bool:
        return self.artifact.exists() or self.lsn_dir.exists()
