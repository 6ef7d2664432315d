"""
Root Typer application for the openemr-ops CLI.

Sub-commands import their subsystem lazily so that ``--help`` and
``--version`` stay fast inside the container entrypoint.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="openemr-ops",
    help="openemr-ops: container startup coordination and database backup chains.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("openemr-ops-core")
        except PackageNotFoundError:
            from openemr_ops import __version__ as v
        typer.echo(f"openemr-ops {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
    json_logs: bool | None = typer.Option(
        None, "--json-logs/--console-logs", help="Force JSON or console log output."
    ),
) -> None:
    """openemr-ops CLI: coordinate container startup, manage backups."""
    ctx.obj = {"log_level": log_level, "json_logs": json_logs}


# ── Sub-command registration ─────────────────────────────────────────────

from openemr_ops.cli.backup import app as backup_app  # noqa: E402
from openemr_ops.cli.coordinate import coordinate  # noqa: E402
from openemr_ops.cli.swarm import app as swarm_app  # noqa: E402

app.command("coordinate")(coordinate)
app.add_typer(swarm_app, name="swarm", help="Replica coordination markers.")
app.add_typer(backup_app, name="backup", help="Backup chains: run, list, restore.")
