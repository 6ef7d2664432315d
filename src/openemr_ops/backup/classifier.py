"""Decide whether the next backup is full or incremental."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from openemr_ops.core.errors import ManifestError
from openemr_ops.core.logging import get_logger
from openemr_ops.backup.identifiers import ArtifactSet, BackupId
from openemr_ops.backup.manifest import BackupCatalog, Manifest

logger = get_logger(__name__)


class BackupKind(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass(frozen=True, slots=True)
class BackupPlan:
    """Classification of the next backup.

    ``manifest`` and ``anchor`` are set only for incrementals: the chain to
    extend and the backup whose LSN directory is the incremental base.
    """

    kind: BackupKind
    reason: str
    manifest: Manifest | None = None
    anchor: BackupId | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "kind": self.kind.value,
            "reason": self.reason,
            "manifest": self.manifest.name if self.manifest else None,
            "anchor": str(self.anchor) if self.anchor else None,
        }


def classify(catalog: BackupCatalog, incrementals: int) -> BackupPlan:
    """Classify the next backup against the current chain.

    Parameters
    ----------
    catalog
        The backup target directory.
    incrementals
        Manifest length at which the cycle is complete and the next backup
        starts a new one.
    """
    current = catalog.current()
    if current is None:
        return BackupPlan(BackupKind.FULL, "no manifest found")

    try:
        entries = current.entries()
    except ManifestError as exc:
        logger.warning("manifest_unusable", manifest=current.name, error=exc.message)
        return BackupPlan(BackupKind.FULL, f"manifest {current.name} is malformed")

    if not entries:
        return BackupPlan(BackupKind.FULL, f"manifest {current.name} is empty")

    if len(entries) >= incrementals:
        return BackupPlan(
            BackupKind.FULL, f"cycle complete ({len(entries)} of {incrementals} backups)"
        )

    anchor = entries[-1]
    if not ArtifactSet(catalog.target_dir, anchor).lsn_dir.is_dir():
        logger.warning("anchor_lsn_missing", manifest=current.name, anchor=str(anchor))
        return BackupPlan(BackupKind.FULL, f"LSN directory of anchor {anchor} is missing")

    return BackupPlan(
        BackupKind.INCREMENTAL,
        f"extending {current.name} ({len(entries)} of {incrementals} backups)",
        manifest=current,
        anchor=anchor,
    )
