"""
CLI: ``openemr-ops coordinate`` - container entrypoint.
"""

from __future__ import annotations

import typer

from openemr_ops.cli.utils import fail, init_logging, load_or_fail
from openemr_ops.core.errors import OpsError


def coordinate(
    ctx: typer.Context,
    serve: bool = typer.Option(
        True, "--serve/--no-serve", help="Exec the web server when this process is an operator."
    ),
) -> None:
    """Run the startup coordinator, then serve (operator) or exit."""
    from openemr_ops.coordination.lifecycle import ExitCode, StartupCoordinator, launch_server
    from openemr_ops.coordination.settings import CoordinatorSettings

    settings = load_or_fail(CoordinatorSettings)
    init_logging(ctx, settings, "openemr-coordinator")

    report = StartupCoordinator(settings).run()
    if report.exit_code is not ExitCode.OK:
        raise typer.Exit(code=int(report.exit_code))
    if report.serve and serve:
        try:
            launch_server(settings)
        except OpsError as exc:
            fail(exc)
