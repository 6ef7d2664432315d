"""
CLI: ``openemr-ops swarm`` - inspect and reset replica coordination markers.
"""

from __future__ import annotations

from typing import Any

import typer

from openemr_ops.cli.utils import console, err_console, fail, init_logging, load_or_fail, output_data
from openemr_ops.core.errors import OpsError

app = typer.Typer(no_args_is_help=True)


def _status(settings: Any) -> dict[str, Any]:
    from openemr_ops.coordination.installer import InstallationCheck
    from openemr_ops.coordination.lifecycle import build_election
    from openemr_ops.coordination.markers import COMPLETED_MARKER, INITIATED_MARKER
    from openemr_ops.coordination.roles import compute_role
    from openemr_ops.coordination.versions import VersionMarkers

    election = build_election(settings)
    record = election.lease.current()
    age = election.lease.age()
    versions = VersionMarkers.from_settings(settings).snapshot()
    return {
        "instance": settings.instance_id,
        "k8s": settings.k8s or "-",
        "swarm_mode": settings.swarm_mode,
        "role": compute_role(settings.k8s).describe(),
        "configured": InstallationCheck(settings.sqlconf_path).is_configured(),
        "markers": {
            "leader": record is not None,
            "in_progress": election.store.exists(INITIATED_MARKER),
            "completed": election.store.exists(COMPLETED_MARKER),
        },
        "lease": {
            "holder": record.holder if record else None,
            "epoch": record.epoch if record else None,
            "age_s": round(age, 1) if age is not None else None,
            "expired": election.lease.is_expired() if record else None,
        },
        "versions": {
            "target": versions.target,
            "code": versions.code,
            "data": versions.data,
            "needs_upgrade": versions.needs_upgrade,
        },
    }


@app.command("status")
def status(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show role inputs, markers, lease record and version markers."""
    from openemr_ops.coordination.settings import CoordinatorSettings

    settings = load_or_fail(CoordinatorSettings)
    init_logging(ctx, settings, "openemr-ops")
    try:
        data = _status(settings)
    except OpsError as exc:
        fail(exc)
    output_data(data, as_json=json_out, title="Swarm status")


@app.command("reset")
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Confirm the reset."),
) -> None:
    """Remove leadership, in-progress and completion markers."""
    from openemr_ops.coordination.lifecycle import build_election
    from openemr_ops.coordination.settings import CoordinatorSettings

    if not yes:
        err_console.print("[bold red]Refusing to reset swarm markers without --yes[/bold red]")
        raise typer.Exit(code=1)

    settings = load_or_fail(CoordinatorSettings)
    init_logging(ctx, settings, "openemr-ops")
    removed = build_election(settings).reset()
    if removed:
        console.print(f"Removed: {', '.join(removed)}")
    else:
        console.print("[dim]No markers present.[/dim]")
