"""
Origin commands.

Show the effective acquisition policy for a hostname after defaults,
app.yaml and the origins file are merged.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import orjson
import typer
from rich.console import Console

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)

app = typer.Typer(
    help="Inspect per-origin policies",
    no_args_is_help=True,
)


@app.command("show")
def show(
    host: str = typer.Argument(..., help="Hostname or URL"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to app.yaml"),
) -> None:
    """Print the effective policy for one origin."""
    from prodscope.core.config.loader import ConfigError, load_app_config, load_origin_policies
    from prodscope.core.normalize.urls import normalize_origin

    try:
        app_config = load_app_config(config)
        table = load_origin_policies(app_config)
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from e

    origin = normalize_origin(host)
    policy = table.for_origin(origin)
    data = policy.model_dump(mode="json")
    data["hostname"] = origin
    data["configured"] = origin in table
    console.print_json(orjson.dumps(data).decode("utf-8"))


@app.command("list")
def list_origins(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to app.yaml"),
) -> None:
    """List origins with an explicit policy."""
    from prodscope.core.config.loader import ConfigError, load_app_config, load_origin_policies

    try:
        table = load_origin_policies(load_app_config(config))
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from e

    if not len(table):
        console.print("[dim]No origin policies configured.[/dim]")
        return
    for host in sorted(table):
        render = table[host].acquisition.render.value
        console.print(f"[cyan]{host}[/cyan] render={render}")
