"""
Backup agent: one classify -> backup -> prune cycle.

Manifesto:
    - **Chain invariant first:** a manifest line is written only after the
      streaming pipeline finished cleanly; a failed backup leaves no
      artifact, LSN directory or sidecar behind
    - **Loud failure:** a pipeline failure is logged with a warning banner
      and propagates, so the scheduler sees a non-zero exit
    - **Single writer:** the agent assumes nothing else writes the backup
      directory during a run; there is no lock

Examples:
    >>> agent = BackupAgent(settings)
    >>> agent.plan().kind
    <BackupKind.INCREMENTAL: 'incremental'>
    >>> report = agent.run()
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from openemr_ops.core.clock import Clock, SystemClock
from openemr_ops.core.errors import BackupError, ErrorCategory, ManifestError, OpsError
from openemr_ops.core.logging import LogContext, get_logger, log_step
from openemr_ops.backup.classifier import BackupKind, BackupPlan, classify
from openemr_ops.backup.identifiers import ArtifactSet, BackupId
from openemr_ops.backup.manifest import BackupCatalog, Manifest
from openemr_ops.backup.pruning import PruneReport, prune_cycles
from openemr_ops.backup.settings import BackupSettings
from openemr_ops.backup.tool import BackupTool, MariaBackupTool

logger = get_logger(__name__)

FAILURE_BANNER = "--- WARNING WARNING WARNING ---"


@dataclass
class BackupReport:
    backup_id: BackupId
    kind: BackupKind
    manifest: Path
    artifact: Path
    size_bytes: int
    chain_length: int
    pruned: PruneReport | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "backup_id": str(self.backup_id),
            "kind": self.kind.value,
            "manifest": self.manifest.name,
            "artifact": self.artifact.name,
            "size_bytes": self.size_bytes,
            "chain_length": self.chain_length,
            "pruned": self.pruned.to_dict() if self.pruned else None,
        }


class BackupAgent:
    """Runs backups into ``settings.target_dir``."""

    def __init__(
        self,
        settings: BackupSettings,
        tool: BackupTool | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings
        self.tool = tool or MariaBackupTool(settings)
        self.clock = clock or SystemClock()
        self.catalog = BackupCatalog(settings.target_dir)

    def plan(self) -> BackupPlan:
        return classify(self.catalog, self.settings.incrementals)

    def _check_target(self) -> None:
        if not self.settings.target_dir.is_dir():
            raise BackupError(
                f"Backup target {self.settings.target_dir} does not exist",
                category=ErrorCategory.STORAGE,
            )

    def _snapshot_healthcheck(self, artifacts: ArtifactSet) -> None:
        source = self.settings.healthcheck_file
        if source.is_file():
            shutil.copyfile(source, artifacts.healthcheck)

    @staticmethod
    def _discard(artifacts: ArtifactSet) -> None:
        shutil.rmtree(artifacts.lsn_dir, ignore_errors=True)
        artifacts.artifact.unlink(missing_ok=True)
        artifacts.healthcheck.unlink(missing_ok=True)

    def _newest_recorded(self, plan: BackupPlan) -> BackupId | None:
        if plan.anchor is not None:
            return plan.anchor
        current = self.catalog.current()
        if current is None:
            return None
        try:
            return current.anchor or current.backup_id
        except ManifestError:
            return current.backup_id

    def backup(self, plan: BackupPlan, backup_id: BackupId) -> Manifest:
        """Take one backup according to ``plan`` and record it in a manifest."""
        target = self.settings.target_dir
        artifacts = ArtifactSet(target, backup_id)
        if artifacts.exists() or artifacts.manifest.exists():
            raise BackupError(f"Backup {backup_id} already exists").with_context(
                target=str(target)
            )
        newest = self._newest_recorded(plan)
        if newest is not None and backup_id <= newest:
            raise BackupError(
                f"Backup {backup_id} is not newer than recorded backup {newest}; "
                "has the clock moved backwards?"
            ).with_context(target=str(target))

        basedir = None
        if plan.kind is BackupKind.INCREMENTAL:
            basedir = ArtifactSet(target, plan.anchor).lsn_dir

        artifacts.lsn_dir.mkdir()
        try:
            self._snapshot_healthcheck(artifacts)
            self.tool.stream_backup(artifacts.artifact, artifacts.lsn_dir, basedir)
            if plan.kind is BackupKind.FULL:
                manifest = Manifest(artifacts.manifest)
                manifest.create(backup_id)
            else:
                manifest = plan.manifest
                manifest.append(backup_id)
        except (OpsError, OSError) as exc:
            self._discard(artifacts)
            logger.error(FAILURE_BANNER)
            logger.error(
                "backup_failed",
                kind=plan.kind.value,
                backup_id=str(backup_id),
                error=str(exc),
            )
            logger.error(FAILURE_BANNER)
            if isinstance(exc, OpsError):
                raise
            raise BackupError(f"{plan.kind.value} backup {backup_id} failed", cause=exc) from exc
        return manifest

    def run(self) -> BackupReport:
        """Classify, back up, prune."""
        self._check_target()
        plan = self.plan()
        backup_id = BackupId.now(self.clock)
        logger.info("backup_planned", backup_id=str(backup_id), **plan.to_dict())

        with LogContext(backup_id=str(backup_id)):
            with log_step("backup", kind=plan.kind.value) as metrics:
                manifest = self.backup(plan, backup_id)
                artifact = ArtifactSet(self.settings.target_dir, backup_id).artifact
                metrics["size_bytes"] = artifact.stat().st_size

            with log_step("prune", cycles_to_keep=self.settings.cycles_to_keep):
                pruned = prune_cycles(self.catalog, self.settings.cycles_to_keep)

        return BackupReport(
            backup_id=backup_id,
            kind=plan.kind,
            manifest=manifest.path,
            artifact=artifact,
            size_bytes=metrics["size_bytes"],
            chain_length=len(manifest),
            pruned=pruned,
        )
