"""
Parse commands.

Run the extraction engine against one or more product URLs and print
the validated product, or the errors and partial data when validation fails.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import orjson
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)

app = typer.Typer(
    help="Parse product URLs",
    no_args_is_help=True,
)


def _load_context(config: Path | None, no_render: bool, verbose: bool) -> Any:
    from prodscope.core.config.loader import ConfigError, load_app_config
    from prodscope.core.context import ParserContext
    from prodscope.core.logging import setup_logging

    try:
        app_config = load_app_config(config)
        if no_render:
            app_config.playwright.enabled = False
        log_config = app_config.logging
        setup_logging(
            level="DEBUG" if verbose else log_config.level,
            log_file=log_config.file,
            json_format=log_config.json_format,
            rich_console=log_config.rich_console,
        )
        return ParserContext.create(app_config)
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from e


async def _parse_all(context: Any, urls: list[str], concurrency: int) -> tuple[list[Any], dict[str, Any]]:
    from prodscope.core.orchestrator import ProductParser

    async with context:
        parser = ProductParser(context)
        results = await parser.parse_many(urls, concurrency=concurrency)
        await parser.drain()
        return results, parser.stats()


def _print_result(url: str, result: Any) -> None:
    if result.valid and result.product is not None:
        product = result.product
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value")
        for key, value in product.to_dict().items():
            if key == "images":
                value = "\n".join(value)
            table.add_row(key, str(value))
        mode = result.metadata.get("mode", "?")
        title = f"[bold green]OK[/bold green] {url} [dim]({mode})[/dim]"
        if result.recovered:
            title += " [yellow]recovered[/yellow]"
        console.print(Panel(table, title=title, border_style="green", title_align="left"))
    else:
        lines = [f"[red]{issue.field}[/red]: {issue.message}" for issue in result.errors]
        if result.partial:
            lines.append("")
            lines.append("[dim]Partial data:[/dim]")
            lines.extend(f"  {k}: {v}" for k, v in result.partial.items() if k not in ("validated_at",))
        console.print(
            Panel("\n".join(lines), title=f"[bold red]FAILED[/bold red] {url}", border_style="red", title_align="left")
        )

    for warning in result.warnings:
        console.print(f"  [yellow]warning[/yellow] {warning.field}: {warning.message}")


@app.command("url")
def parse_url(
    urls: list[str] = typer.Argument(..., help="Product page URL(s)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to app.yaml"),
    as_json: bool = typer.Option(False, "--json", "-j", help="Print results as JSON"),
    no_render: bool = typer.Option(False, "--no-render", help="Never launch a browser"),
    concurrency: int = typer.Option(4, "--concurrency", "-n", min=1, help="URLs parsed at once"),
    show_stats: bool = typer.Option(False, "--stats", help="Print engine statistics afterwards"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Parse product pages into validated product records.

    Examples:

        prodscope parse url https://shop.example/product/123

        prodscope parse url https://a.example/p/1 https://b.example/p/2 --json
    """
    context = _load_context(config, no_render, verbose)
    results, stats = asyncio.run(_parse_all(context, urls, concurrency))

    if as_json:
        payload: Any = [result.to_dict() for result in results]
        if len(payload) == 1:
            payload = payload[0]
        if show_stats:
            payload = {"results": payload, "stats": stats}
        console.print_json(orjson.dumps(payload, default=str).decode("utf-8"))
    else:
        for url, result in zip(urls, results):
            _print_result(url, result)
        if show_stats:
            console.print_json(orjson.dumps(stats, default=str).decode("utf-8"))

    if not all(result.valid for result in results):
        raise typer.Exit(1)
