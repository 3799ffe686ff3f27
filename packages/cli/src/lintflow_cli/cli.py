"""CLI entry point for lintflow.

Commands:
  run          : lint a Gerrit change and vote on it
  check-config : validate the configuration and list the lint engines
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from lintflow_cli.commands.check_config import check_config_cmd
from lintflow_cli.commands.run import run_cmd

console = Console()


def _setup_logging(verbose: bool) -> None:
    """Configure the root logger once for the whole process."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO; keep it for --verbose only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("lintflow"),
    prog_name="lintflow",
)
@click.option(
    "--config",
    "config_path",
    default=".lintflow.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="LINTFLOW_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Lint Gerrit changes with remote lint engines and vote on the result."""
    from lintflow_core.config import load_config
    from lintflow_core.errors import ConfigError

    _setup_logging(verbose)
    ctx.ensure_object(dict)

    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        raise click.UsageError(str(e))
    ctx.obj["config_path"] = config_path


main.add_command(run_cmd)
main.add_command(check_config_cmd)
