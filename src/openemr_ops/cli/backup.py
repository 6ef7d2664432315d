"""
CLI: ``openemr-ops backup`` - backup chain commands.

Every command reads ``BackupSettings`` from the environment and an optional
``properties`` file (``--properties``, default ``./properties``).
"""

from __future__ import annotations

from pathlib import Path

import typer

from openemr_ops.cli.utils import console, fail, init_logging, load_or_fail, output_data
from openemr_ops.core.errors import ConfigError, OpsError

app = typer.Typer(no_args_is_help=True)

PROPERTIES_OPTION = typer.Option(
    Path("properties"), "--properties", "-p", help="KEY=value settings file."
)


def _settings(ctx: typer.Context, properties: Path):
    from openemr_ops.backup.settings import BackupSettings

    settings = load_or_fail(BackupSettings, _env_file=properties)
    init_logging(ctx, settings, "openemr-backup")
    return settings


@app.command("run")
def run_backup(
    ctx: typer.Context,
    properties: Path = PROPERTIES_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Classify, take one backup, prune old cycles."""
    from openemr_ops.backup.agent import BackupAgent

    settings = _settings(ctx, properties)
    try:
        report = BackupAgent(settings).run()
    except OpsError as exc:
        fail(exc)
    output_data(report.to_dict(), as_json=json_out, title="Backup")


@app.command("plan")
def plan_backup(
    ctx: typer.Context,
    properties: Path = PROPERTIES_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show whether the next backup would be full or incremental."""
    from openemr_ops.backup.agent import BackupAgent

    settings = _settings(ctx, properties)
    output_data(BackupAgent(settings).plan().to_dict(), as_json=json_out, title="Next backup")


@app.command("list")
def list_chains(
    ctx: typer.Context,
    properties: Path = PROPERTIES_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List manifests (oldest first) and their entries."""
    from openemr_ops.backup.manifest import BackupCatalog

    settings = _settings(ctx, properties)
    rows = []
    for manifest in BackupCatalog(settings.target_dir).manifests():
        try:
            entries = [str(entry) for entry in manifest.entries()]
        except OpsError as exc:
            rows.append({"manifest": manifest.name, "entries": 0, "chain": f"invalid: {exc.message}"})
            continue
        rows.append({"manifest": manifest.name, "entries": len(entries), "chain": " ".join(entries)})
    output_data(rows, as_json=json_out, title="Backup chains")


@app.command("setup")
def setup_credentials(
    ctx: typer.Context,
    properties: Path = PROPERTIES_OPTION,
    secrets: Path = typer.Option(
        Path("secrets"), "--secrets", help="Installer-provided KEY=value file, removed afterwards."
    ),
    keep_secrets: bool = typer.Option(False, "--keep-secrets"),
) -> None:
    """Write the ``[client]`` credentials option file."""
    from openemr_ops.backup.credentials import resolve_client_credentials, write_client_credentials
    from openemr_ops.core.settings import layered_environ

    settings = _settings(ctx, properties)
    credentials = resolve_client_credentials(layered_environ(properties, secrets))
    if not credentials.user or not credentials.password:
        fail(ConfigError("No database user or password found in the environment or secrets file"))

    path = write_client_credentials(settings.credentials_file, credentials)
    if secrets.is_file() and not keep_secrets:
        secrets.unlink()
    console.print(f"Wrote {path}")


@app.command("restore")
def restore(
    ctx: typer.Context,
    properties: Path = PROPERTIES_OPTION,
    manifest: str | None = typer.Option(None, "--manifest", "-m", help="Manifest name or path."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Prepare only; leave the data directory untouched."),
    compose_project: str | None = typer.Option(
        None, "--compose-project", help="Stop this compose project around the restore."
    ),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Replay a backup chain into the data directory."""
    from contextlib import nullcontext

    from openemr_ops.backup.compose import stopped_services
    from openemr_ops.backup.manifest import BackupCatalog
    from openemr_ops.backup.restore import RestoreReplayer
    from openemr_ops.backup.tool import MariaBackupTool

    settings = _settings(ctx, properties)
    project = compose_project or settings.project
    replayer = RestoreReplayer(settings, MariaBackupTool(settings), BackupCatalog(settings.target_dir))
    guard = (
        stopped_services(project, timeout=settings.stop_timeout)
        if project and not dry_run
        else nullcontext()
    )
    try:
        with guard:
            report = replayer.run(manifest, dry_run=dry_run)
    except OpsError as exc:
        fail(exc)

    output_data(report.to_dict(), as_json=json_out, title="Restore")
    if dry_run:
        console.print(f"[yellow]Dry run:[/yellow] prepared data left in {replayer.full_dir}")
