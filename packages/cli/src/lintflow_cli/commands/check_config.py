"""check-config command: validate configuration and list lint engines."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from lintflow_core.config import lint_configs, review_config
from lintflow_core.errors import ConfigError

console = Console()


@click.command("check-config")
@click.pass_context
def check_config_cmd(ctx):
    """Validate the configuration file and show the configured lint engines."""
    config = ctx.obj["config"]
    try:
        review = review_config(config)
        engines = lint_configs(config)
    except ConfigError as e:
        raise click.UsageError(str(e))

    auth = "authenticated" if review.authenticated else "anonymous"
    console.print(f"\n[bold]Gerrit:[/bold] {review.host}:{review.port} ({auth})")
    console.print(
        f"[bold]Vote:[/bold] {review.vote.label} "
        f"[green]{review.vote.approval}[/green] / [red]{review.vote.disapproval}[/red]\n"
    )

    table = Table(title=f"Lint engines: {ctx.obj.get('config_path', '')}", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Address")
    table.add_column("Extensions")
    for engine in engines:
        table.add_row(engine.name, engine.address, ", ".join(engine.extensions) or "[dim]none[/dim]")

    console.print(table)
