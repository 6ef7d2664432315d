"""Version markers: target (image), code (installed assets), data (persistent state)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from openemr_ops.core.logging import get_logger

logger = get_logger(__name__)


def read_version(path: Path) -> int:
    """Read an integer version file. Missing, unreadable or garbage content is 0."""
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return 0
    try:
        return max(int(text), 0)
    except ValueError:
        logger.warning("version_file_unparsable", path=str(path), content=text[:32])
        return 0


def write_version(path: Path, version: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(version), encoding="utf-8")


@dataclass(frozen=True, slots=True)
class VersionSnapshot:
    target: int
    code: int
    data: int

    @property
    def needs_upgrade(self) -> bool:
        return self.target == self.code and self.target > self.data

    def pending_steps(self) -> range:
        """Upgrade steps still to run, ascending: ``data + 1 .. target``."""
        if not self.needs_upgrade:
            return range(0)
        return range(self.data + 1, self.target + 1)


class VersionMarkers:
    def __init__(self, target_file: Path, code_file: Path, data_file: Path) -> None:
        self.target_file = Path(target_file)
        self.code_file = Path(code_file)
        self.data_file = Path(data_file)

    @classmethod
    def from_settings(cls, settings) -> VersionMarkers:
        return cls(
            settings.image_version_file,
            settings.code_version_file,
            settings.data_version_file,
        )

    def snapshot(self) -> VersionSnapshot:
        return VersionSnapshot(
            target=read_version(self.target_file),
            code=read_version(self.code_file),
            data=read_version(self.data_file),
        )

    def write_data(self, version: int) -> None:
        write_version(self.data_file, version)
        logger.info("data_version_written", version=version)

    def write_code(self, version: int) -> None:
        write_version(self.code_file, version)
        logger.info("code_version_written", version=version)
