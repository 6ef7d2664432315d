"""
Adapter for the streaming backup tool.

``MariaBackupTool`` drives ``mariadb-backup`` and ``mbstream``. The backup
stream is compressed in-process with :mod:`gzip` while it is produced, so
the pipeline has exactly two failure points (the tool's exit status and the
compressed write) and both raise :class:`BackupPipelineError`.
"""

from __future__ import annotations

import gzip
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from openemr_ops.core.errors import BackupPipelineError, CommandError, RestoreError
from openemr_ops.core.logging import get_logger
from openemr_ops.core.process import CommandRunner
from openemr_ops.backup.settings import BackupSettings

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


@runtime_checkable
class BackupTool(Protocol):
    """Operations the backup agent and the restore replayer need."""

    def stream_backup(
        self, destination: Path, lsn_dir: Path, incremental_basedir: Path | None = None
    ) -> None:
        """Write a compressed backup stream to ``destination``."""
        ...

    def extract(self, artifact: Path, target: Path) -> None:
        """Unpack a compressed stream into ``target``."""
        ...

    def prepare(self, target: Path, incremental_dir: Path | None = None) -> None:
        """Prepare ``target``, merging ``incremental_dir`` into it if given."""
        ...

    def copy_back(self, target: Path) -> None:
        """Copy a prepared backup into the (empty) data directory."""
        ...


class MariaBackupTool:
    """``mariadb-backup`` / ``mbstream`` implementation of :class:`BackupTool`."""

    def __init__(self, settings: BackupSettings, runner: CommandRunner | None = None) -> None:
        self.settings = settings
        self.runner = runner or CommandRunner()

    def backup_argv(self, lsn_dir: Path, incremental_basedir: Path | None = None) -> list[str]:
        argv = [
            self.settings.backup_binary,
            f"--defaults-extra-file={self.settings.credentials_file}",
            "--backup",
            "--stream=xbstream",
        ]
        if incremental_basedir is not None:
            argv.append(f"--incremental-basedir={incremental_basedir}")
        argv.append(f"--extra-lsndir={lsn_dir}")
        return argv

    def stream_backup(
        self, destination: Path, lsn_dir: Path, incremental_basedir: Path | None = None
    ) -> None:
        argv = self.backup_argv(lsn_dir, incremental_basedir)
        logger.debug("backup_stream_started", argv=argv, destination=str(destination))
        try:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE)
        except OSError as exc:
            raise BackupPipelineError(
                f"Cannot start {argv[0]}", cause=exc
            ).with_context(argv=argv) from exc

        try:
            with gzip.open(destination, "wb", compresslevel=self.settings.compression_level) as out:
                shutil.copyfileobj(proc.stdout, out, CHUNK_SIZE)
        except OSError as exc:
            proc.kill()
            proc.wait()
            raise BackupPipelineError(
                f"Compression of backup stream failed: {exc}", cause=exc
            ).with_context(destination=str(destination)) from exc
        finally:
            proc.stdout.close()

        returncode = proc.wait()
        if returncode != 0:
            raise BackupPipelineError(
                f"{argv[0]} exited with status {returncode}"
            ).with_context(returncode=returncode, destination=str(destination))

    def extract(self, artifact: Path, target: Path) -> None:
        target.mkdir(parents=True, exist_ok=True)
        argv = [self.settings.mbstream_binary, "-x", "-C", str(target)]
        try:
            proc = subprocess.Popen(argv, stdin=subprocess.PIPE)
        except OSError as exc:
            raise RestoreError(f"Cannot start {argv[0]}", cause=exc) from exc

        try:
            with gzip.open(artifact, "rb") as source:
                shutil.copyfileobj(source, proc.stdin, CHUNK_SIZE)
        except OSError as exc:
            proc.kill()
            proc.wait()
            raise RestoreError(
                f"Cannot decompress {artifact.name}: {exc}", cause=exc
            ).with_context(artifact=str(artifact)) from exc
        finally:
            if not proc.stdin.closed:
                proc.stdin.close()

        returncode = proc.wait()
        if returncode != 0:
            raise RestoreError(
                f"{argv[0]} exited with status {returncode} extracting {artifact.name}"
            ).with_context(returncode=returncode)

    def _run(self, argv: list[str]) -> None:
        try:
            self.runner.run(argv, check=True)
        except CommandError as exc:
            raise RestoreError(str(exc), cause=exc).with_context(argv=exc.argv) from exc

    def prepare(self, target: Path, incremental_dir: Path | None = None) -> None:
        argv = [self.settings.backup_binary, "--prepare", f"--target-dir={target}"]
        if incremental_dir is not None:
            argv.append(f"--incremental-dir={incremental_dir}")
        self._run(argv)

    def copy_back(self, target: Path) -> None:
        self._run(
            [
                self.settings.backup_binary,
                "--copy-back",
                f"--target-dir={target}",
                f"--datadir={self.settings.datadir}",
            ]
        )
