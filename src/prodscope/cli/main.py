"""
Prodscope CLI - Main entry point.

Parse product pages from the terminal and inspect the configuration
that drives extraction.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.traceback import install as install_rich_traceback

from prodscope import __app_name__, __version__

# Load environment variables from .env (if present)
load_dotenv()

install_rich_traceback(show_locals=False, width=120)

# Force UTF-8 on Windows to avoid encoding issues
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            try:
                stream.reconfigure(encoding="utf-8", errors="replace")
            except (AttributeError, OSError):
                pass

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)

app = typer.Typer(
    name=__app_name__,
    help="Universal product extraction engine",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Prodscope - turn product pages into validated product records."""


# =============================================================================
# Register subcommand modules
# =============================================================================

from .commands import origins, parse, recipes  # noqa: E402

app.add_typer(parse.app, name="parse", help="Parse product URLs")
app.add_typer(recipes.app, name="recipes", help="Validate and list site recipes")
app.add_typer(origins.app, name="origins", help="Inspect per-origin policies")


# =============================================================================
# Init Command
# =============================================================================


DEFAULT_APP_CONFIG = """\
# Prodscope configuration

recipes_dir: configs/recipes
origins_file: configs/origins.yaml

logging:
  level: INFO
  file: logs/prodscope.log
  json_format: true
  rich_console: true

timeouts:
  static_fetch: 10
  navigation: 30
  per_call: 90

render:
  hourly_budget: 100
  always_render: []
  never_render: []

pattern_memory:
  enabled: true
  backend: json
  path: data/patterns.json
"""


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing configuration"),
) -> None:
    """Create the default configuration and data directories."""
    for dir_path in (Path("configs/recipes"), Path("data"), Path("logs")):
        dir_path.mkdir(parents=True, exist_ok=True)

    app_config_path = Path("configs/app.yaml")
    if app_config_path.exists() and not force:
        console.print(f"[yellow]{app_config_path} already exists[/yellow] (use --force to overwrite)")
        return

    app_config_path.write_text(DEFAULT_APP_CONFIG, encoding="utf-8")
    console.print(f"[green]OK[/green] Wrote [cyan]{app_config_path}[/cyan]")
    console.print("Next: [yellow]prodscope parse url https://shop.example/product/123[/yellow]")


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
