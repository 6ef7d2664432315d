"""Retention of backup cycles."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path

from openemr_ops.core.logging import get_logger
from openemr_ops.backup.identifiers import BackupId
from openemr_ops.backup.manifest import BackupCatalog

logger = get_logger(__name__)


@dataclass
class PruneReport:
    """Result of a prune run."""

    cutoff: BackupId | None = None
    removed: list[Path] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "cutoff": str(self.cutoff) if self.cutoff else None,
            "removed": [p.name for p in self.removed],
            "errors": dict(self.errors),
        }


def prune_cycles(catalog: BackupCatalog, cycles_to_keep: int) -> PruneReport:
    """Delete backup cycles older than the retention cutoff.

    Parameters
    ----------
    catalog
        The backup target directory.
    cycles_to_keep
        Number of newest manifests that are never candidates for the
        cutoff. The cutoff is the ``(cycles_to_keep + 1)``-th newest
        manifest; every entry whose identifier is older than it is removed.
        The cutoff cycle itself and every newer cycle stay.

    Returns
    -------
    PruneReport
        Cutoff used and entries removed. Removal failures are recorded in
        ``errors`` and the remaining entries are still processed.
    """
    if cycles_to_keep < 1:
        raise ValueError("cycles_to_keep must be at least 1")

    newest_first = list(reversed(catalog.manifests()))
    if len(newest_first) <= cycles_to_keep:
        return PruneReport()

    cutoff = newest_first[cycles_to_keep].backup_id
    report = PruneReport(cutoff=cutoff)
    for backup_id, path in catalog.items():
        if backup_id >= cutoff:
            continue
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as exc:
            report.errors[path.name] = str(exc)
            continue
        report.removed.append(path)

    logger.info(
        "backups_pruned",
        cutoff=str(cutoff),
        removed=len(report.removed),
        errors=len(report.errors),
    )
    return report
