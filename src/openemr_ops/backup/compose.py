"""Stop and restart the compose project around a destructive restore."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from openemr_ops.core.errors import CommandError
from openemr_ops.core.logging import get_logger
from openemr_ops.core.process import CommandRunner

logger = get_logger(__name__)


def compose_argv(project: str, *args: str) -> list[str]:
    return ["docker", "compose", "-p", project, *args]


@contextmanager
def stopped_services(
    project: str,
    runner: CommandRunner | None = None,
    timeout: int = 60,
) -> Iterator[None]:
    """Stop every service of ``project`` for the duration of the block.

    Services are started again when the block exits, also on failure. When
    the block failed, a failing ``start`` is logged and the block's own
    exception propagates.

    Raises:
        CommandError: ``docker compose stop`` failed, or ``start`` failed
            after a successful block.
    """
    runner = runner or CommandRunner()
    logger.info("compose_stopping", project=project, timeout_s=timeout)
    runner.run(compose_argv(project, "stop", "--timeout", str(timeout)), check=True)
    try:
        yield
    except BaseException:
        _start(project, runner, raise_on_error=False)
        raise
    _start(project, runner, raise_on_error=True)


def _start(project: str, runner: CommandRunner, raise_on_error: bool) -> None:
    logger.info("compose_starting", project=project)
    try:
        runner.run(compose_argv(project, "start"), check=True)
    except CommandError as exc:
        logger.error(
            "compose_start_failed",
            project=project,
            error=exc.message,
            hint=f"run 'docker compose -p {project} start' by hand",
        )
        if raise_on_error:
            raise
