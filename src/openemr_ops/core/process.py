"""
External command execution.

Everything the coordinator and the backup agent actually *do* to the world
goes through external programs (the PHP installer, ``mysqladmin``,
``mariadb-backup``, ``docker compose``). :class:`CommandRunner` is the
single seam for those calls: it logs each command with secrets masked and
returns a :class:`CommandOutcome`. Tests replace it with a recording fake.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from openemr_ops.core.errors import CommandError
from openemr_ops.core.logging import get_logger

logger = get_logger(__name__)

_MASK = "****"


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """Result of one external command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def mask_argv(argv: Sequence[str], secrets: Iterable[str] = ()) -> list[str]:
    """Replace every occurrence of a secret inside argv with ``****``."""
    masked = list(argv)
    for secret in secrets:
        if not secret:
            continue
        masked = [arg.replace(secret, _MASK) for arg in masked]
    return masked


class CommandRunner:
    """Runs external commands via :mod:`subprocess`.

    Parameters
    ----------
    secrets
        Values that must never appear in logs (passwords passed on the
        command line).
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        self.secrets = [s for s in secrets if s]

    def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        cwd: str | Path | None = None,
        check: bool = False,
        timeout: float | None = None,
    ) -> CommandOutcome:
        """Run ``argv`` to completion and capture its output.

        Raises:
            CommandError: when ``check`` is set and the command exits non-zero,
                or when the program cannot be started at all.
        """
        shown = mask_argv(argv, self.secrets)
        logger.debug("command_started", argv=shown)
        merged_env = {**os.environ, **env} if env is not None else None
        try:
            proc = subprocess.run(
                list(argv),
                env=merged_env,
                input=input,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise CommandError(shown, -1, str(exc), cause=exc) from exc

        outcome = CommandOutcome(
            argv=shown,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
        if outcome.ok:
            logger.debug("command_completed", program=shown[0] if shown else "")
        else:
            logger.debug(
                "command_failed",
                program=shown[0] if shown else "",
                returncode=proc.returncode,
                stderr=outcome.stderr[-500:],
            )
            if check:
                raise CommandError(shown, proc.returncode, outcome.stderr)
        return outcome
