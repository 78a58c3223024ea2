"""
Recipe commands.

Validate recipe YAML files and list the recipes the engine would load.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)

app = typer.Typer(
    help="Validate and list site recipes",
    no_args_is_help=True,
)


@app.command("validate")
def validate(
    paths: list[Path] = typer.Argument(..., help="Recipe YAML file(s)"),
) -> None:
    """Validate recipe files, including their assertions."""
    from prodscope.core.config.loader import validate_recipe_file

    failed = 0
    for path in paths:
        errors = validate_recipe_file(path)
        if errors:
            failed += 1
            console.print(f"[red]x[/red] {path}")
            for error in errors:
                console.print(f"    [dim]-[/dim] {error}")
        else:
            console.print(f"[green]OK[/green] {path}")

    if failed:
        raise typer.Exit(1)


@app.command("list")
def list_recipes(
    recipes_dir: Optional[Path] = typer.Option(None, "--dir", "-d", help="Recipe directory"),
) -> None:
    """List loaded recipes."""
    from prodscope.core.config.loader import ConfigError, load_all_recipes

    try:
        recipes = load_all_recipes(recipes_dir)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    if not recipes:
        console.print("[dim]No recipes found.[/dim]")
        return

    table = Table(title="Recipes", show_header=True, header_style="bold magenta")
    table.add_column("Domain", style="cyan", no_wrap=True)
    table.add_column("Version")
    table.add_column("Fields")
    table.add_column("Assertions", justify="right")

    for domain, recipe in sorted(recipes.items()):
        table.add_row(domain, recipe.version, ", ".join(recipe.selectors), str(len(recipe.assertions)))

    console.print(table)
