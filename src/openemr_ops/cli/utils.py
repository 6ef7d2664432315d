"""
CLI utility helpers: output formatting, settings loading, logging setup.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn, TypeVar

import typer
from pydantic_settings import BaseSettings
from rich.console import Console
from rich.table import Table

from openemr_ops.core.errors import OpsError
from openemr_ops.core.logging import configure_logging
from openemr_ops.core.settings import OpsBaseSettings, load_settings

console = Console()
err_console = Console(stderr=True)

S = TypeVar("S", bound=BaseSettings)


# ── Errors ───────────────────────────────────────────────────────────────


def fail(error: OpsError) -> NoReturn:
    """Print ``Error (CATEGORY): message`` on stderr and exit 1."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error.message}")
    raise typer.Exit(code=1)


def load_or_fail(settings_cls: type[S], **overrides: Any) -> S:
    try:
        return load_settings(settings_cls, **overrides)
    except OpsError as exc:
        fail(exc)


# ── Logging ──────────────────────────────────────────────────────────────


def init_logging(ctx: typer.Context | None, settings: OpsBaseSettings, service: str) -> None:
    """Configure logging from global CLI options, falling back to settings."""
    options = (ctx.obj if ctx is not None else None) or {}
    level = options.get("log_level") or settings.log_level
    json_logs = options.get("json_logs")
    if json_logs is None:
        json_logs = settings.log_json
    configure_logging(level=level, json_format=json_logs, service=service)


# ── Output ───────────────────────────────────────────────────────────────


def output_data(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a dict or a list of dicts."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(data, title=title)


def _print_table(items: list[dict[str, Any]], *, title: str = "") -> None:
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in items[0]:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(str(v) for v in item.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, dict):
            console.print(f"  [cyan]{k}[/cyan]:")
            for sub_k, sub_v in v.items():
                console.print(f"    [cyan]{sub_k}[/cyan]: {sub_v}")
        else:
            console.print(f"  [cyan]{k}[/cyan]: {v}")
