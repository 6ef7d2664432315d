"""Versioned upgrade scripts (``fsupgrade-<n>.sh``)."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from openemr_ops.core.errors import CommandError, UpgradeError
from openemr_ops.core.logging import get_logger, log_step
from openemr_ops.core.process import CommandRunner
from openemr_ops.coordination.versions import VersionMarkers, VersionSnapshot

logger = get_logger(__name__)


def upgrade_script(script_dir: Path, step: int) -> Path:
    return Path(script_dir) / f"fsupgrade-{step}.sh"


class UpgradeRunner:
    """Runs pending upgrade steps strictly in ascending order."""

    def __init__(
        self,
        versions: VersionMarkers,
        script_dir: Path,
        runner: CommandRunner,
        heartbeat: Callable[[], None] | None = None,
        shell: str = "sh",
    ) -> None:
        self.versions = versions
        self.script_dir = Path(script_dir)
        self.runner = runner
        self.heartbeat = heartbeat or (lambda: None)
        self.shell = shell

    def run(self, snapshot: VersionSnapshot | None = None) -> list[int]:
        """Execute every pending step, then advance the data version.

        Returns the steps executed (empty when already up to date).

        Raises:
            UpgradeError: a script is missing or exits non-zero; the data
                version is left untouched.
        """
        snapshot = snapshot or self.versions.snapshot()
        steps = list(snapshot.pending_steps())
        if not steps:
            return []

        logger.info("upgrade_detected", data=snapshot.data, target=snapshot.target)
        # Check the whole chain before running any of it.
        missing = [n for n in steps if not upgrade_script(self.script_dir, n).is_file()]
        if missing:
            raise UpgradeError(
                f"Missing upgrade script(s) for step(s) {missing}"
            ).with_context(script_dir=str(self.script_dir), missing=missing)

        for step in steps:
            script = upgrade_script(self.script_dir, step)
            self.heartbeat()
            with log_step("upgrade_script", script=script.name):
                try:
                    self.runner.run([self.shell, str(script)], check=True)
                except CommandError as exc:
                    raise UpgradeError(
                        f"Upgrade script {script.name} failed", cause=exc
                    ).with_context(step=step, returncode=exc.returncode) from exc
            self.heartbeat()

        self.versions.write_data(snapshot.target)
        self.heartbeat()
        logger.info("upgrade_completed", steps=steps, version=snapshot.target)
        return steps
