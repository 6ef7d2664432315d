"""
Restore replay.

A chain is replayed strictly in manifest order: the first entry is
extracted and prepared as a standalone full backup, every later entry is
extracted and merged into it as an incremental, then discarded. Only after
the whole chain is prepared is the live data directory wiped and replaced.

Architecture:
    ::

        select(manifest)    explicit reference or newest manifest
            ↓
        prepare(plan)       <workdir>/full     extract + prepare   (entry 1)
                            <workdir>/partial  extract + merge     (entries 2..N)
            ↓               ── dry run stops here ──
        complete(plan)      wipe datadir (dotfiles too), copy-back,
                            health-check sidecar of entry N, chown

The caller must stop the database before ``complete``; see
:func:`openemr_ops.backup.compose.stopped_services`.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from openemr_ops.core.errors import ManifestError, RestoreError
from openemr_ops.core.logging import LogContext, get_logger, log_step
from openemr_ops.backup.identifiers import ArtifactSet, BackupId
from openemr_ops.backup.manifest import BackupCatalog, Manifest
from openemr_ops.backup.settings import BackupSettings
from openemr_ops.backup.tool import BackupTool, MariaBackupTool

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RestorePlan:
    manifest: Manifest
    entries: tuple[BackupId, ...]

    @property
    def final(self) -> BackupId:
        return self.entries[-1]


@dataclass
class RestoreReport:
    manifest: str
    applied: list[BackupId] = field(default_factory=list)
    dry_run: bool = False
    completed: bool = False
    healthcheck_restored: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "manifest": self.manifest,
            "applied": [str(b) for b in self.applied],
            "dry_run": self.dry_run,
            "completed": self.completed,
            "healthcheck_restored": self.healthcheck_restored,
        }


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _chown_tree(root: Path, owner: str) -> None:
    user, _, group = owner.partition(":")
    user_arg, group_arg = user or None, group or None
    shutil.chown(root, user_arg, group_arg)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            shutil.chown(os.path.join(dirpath, name), user_arg, group_arg)


class RestoreReplayer:
    """Replays a manifest chain into the database data directory."""

    def __init__(
        self,
        settings: BackupSettings,
        tool: BackupTool | None = None,
        catalog: BackupCatalog | None = None,
    ) -> None:
        self.settings = settings
        self.tool = tool or MariaBackupTool(settings)
        self.catalog = catalog or BackupCatalog(settings.target_dir)

    @property
    def full_dir(self) -> Path:
        return self.settings.workdir / "full"

    @property
    def partial_dir(self) -> Path:
        return self.settings.workdir / "partial"

    def select(self, manifest: str | Path | None = None) -> RestorePlan:
        """Resolve the chain to restore.

        Raises:
            ManifestError: no manifest found, or it is empty/malformed.
            RestoreError: an artifact referenced by the chain is missing.
        """
        if manifest is not None:
            chosen = self.catalog.find(manifest)
        else:
            chosen = self.catalog.current()
            if chosen is None:
                raise ManifestError(
                    f"Cannot autodetect a manifest in {self.settings.target_dir}"
                )

        entries = tuple(chosen.entries())
        if not entries:
            raise ManifestError(f"Manifest {chosen.name} is empty")

        missing = [
            str(entry)
            for entry in entries
            if not ArtifactSet(self.settings.target_dir, entry).artifact.is_file()
        ]
        if missing:
            raise RestoreError(
                f"Manifest {chosen.name} references missing artifacts"
            ).with_context(missing=missing)
        return RestorePlan(manifest=chosen, entries=entries)

    def prepare(self, plan: RestorePlan) -> list[BackupId]:
        """Extract and prepare the whole chain in the work directory."""
        shutil.rmtree(self.settings.workdir, ignore_errors=True)
        applied: list[BackupId] = []
        for index, entry in enumerate(plan.entries):
            artifact = ArtifactSet(self.settings.target_dir, entry).artifact
            if index == 0:
                with log_step("restore_full", backup_id=str(entry)):
                    self.tool.extract(artifact, self.full_dir)
                    self.tool.prepare(self.full_dir)
            else:
                with log_step("restore_incremental", backup_id=str(entry)):
                    self.tool.extract(artifact, self.partial_dir)
                    self.tool.prepare(self.full_dir, self.partial_dir)
                    shutil.rmtree(self.partial_dir)
            applied.append(entry)
        return applied

    def wipe_datadir(self) -> None:
        datadir = self.settings.datadir
        datadir.mkdir(parents=True, exist_ok=True)
        for child in datadir.iterdir():
            _remove(child)

    def complete(self, plan: RestorePlan) -> bool:
        """Replace the live data directory. Returns whether a sidecar was restored."""
        try:
            self.wipe_datadir()
        except OSError as exc:
            raise RestoreError(
                f"Cannot wipe data directory {self.settings.datadir}", cause=exc
            ) from exc

        self.tool.copy_back(self.full_dir)

        sidecar = ArtifactSet(self.settings.target_dir, plan.final).healthcheck
        restored = sidecar.is_file()
        if restored:
            shutil.copyfile(sidecar, self.settings.healthcheck_file)

        if self.settings.datadir_owner:
            try:
                _chown_tree(self.settings.datadir, self.settings.datadir_owner)
            except (OSError, LookupError) as exc:
                raise RestoreError(
                    f"Cannot change owner of {self.settings.datadir}", cause=exc
                ).with_context(owner=self.settings.datadir_owner) from exc

        shutil.rmtree(self.settings.workdir, ignore_errors=True)
        return restored

    def run(self, manifest: str | Path | None = None, dry_run: bool = False) -> RestoreReport:
        plan = self.select(manifest)
        report = RestoreReport(manifest=plan.manifest.name, dry_run=dry_run)
        with LogContext(manifest=plan.manifest.name):
            logger.info("restore_started", entries=len(plan.entries), dry_run=dry_run)
            report.applied = self.prepare(plan)
            if dry_run:
                logger.info("restore_dry_run_halted", prepared=str(self.full_dir))
                return report
            with log_step("restore_copy_back"):
                report.healthcheck_restored = self.complete(plan)
            report.completed = True
            logger.info("restore_completed", final=str(plan.final))
        return report
