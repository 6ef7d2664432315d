"""Backup Chain Manager.

Architecture::

    identifiers.py  BackupId (fixed-width timestamp), ArtifactSet naming
    manifest.py     Manifest chain file, BackupCatalog
    classifier.py   full vs incremental
    tool.py         BackupTool protocol, MariaBackupTool
    agent.py        classify -> backup -> prune
    pruning.py      cycle retention
    restore.py      chain replay, dry run
    credentials.py  [client] option file
    compose.py      stop/start compose project around a restore
"""

from openemr_ops.backup.agent import BackupAgent, BackupReport
from openemr_ops.backup.classifier import BackupKind, BackupPlan, classify
from openemr_ops.backup.identifiers import ArtifactSet, BackupId
from openemr_ops.backup.manifest import BackupCatalog, Manifest
from openemr_ops.backup.pruning import PruneReport, prune_cycles
from openemr_ops.backup.restore import RestorePlan, RestoreReplayer, RestoreReport
from openemr_ops.backup.settings import BackupSettings
from openemr_ops.backup.tool import BackupTool, MariaBackupTool

__all__ = [
    "ArtifactSet",
    "BackupAgent",
    "BackupCatalog",
    "BackupId",
    "BackupKind",
    "BackupPlan",
    "BackupReport",
    "BackupSettings",
    "BackupTool",
    "MariaBackupTool",
    "Manifest",
    "PruneReport",
    "RestorePlan",
    "RestoreReplayer",
    "RestoreReport",
    "classify",
    "prune_cycles",
]
