"""run command: lint a Gerrit change and vote on it."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

from lintflow_core.errors import ConfigError, LintflowError, error_chain
from lintflow_core.runner import run_flow, write_report

console = Console()


@click.command("run")
@click.option("--commit", "commit", required=True, help="Commit hash of the change to lint.")
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print findings without voting on Gerrit.",
)
@click.option("--output-file", "output_file", default=None, help="Write the findings as a JSON report.")
@click.option("--keep-workspace", is_flag=True, help="Keep the staged files after the run.")
@click.pass_context
def run_cmd(ctx, commit: str, shadow: bool, output_file: str | None, keep_workspace: bool):
    """Fetch a change, lint it, and vote.

    Every changed file is fetched from Gerrit, routed to the lint engines whose
    extension filter matches, and the merged findings are posted as inline
    comments with a disapproval vote. No findings means approval.

    \b
    Optional environment variables:
      GERRIT_USER    Gerrit HTTP user (enables authenticated /a/ endpoints)
      GERRIT_PASS    Gerrit HTTP password
    """
    config = ctx.obj["config"]
    keep = keep_workspace or bool(config.get("keep_workspace", False))

    try:
        summary = run_flow(commit, config, shadow=shadow, keep_workspace=keep)
    except ConfigError as e:
        raise click.UsageError(str(e))
    except LintflowError as e:
        chain = error_chain(e)
        console.print(f"[red]Run failed: {escape(chain[0])}[/red]")
        for cause in chain[1:]:
            console.print(f"  [red]caused by: {escape(cause)}[/red]")
        ctx.exit(1)

    if output_file:
        write_report(summary, output_file)
        console.print(f"[dim]Report written to {output_file}[/dim]")

    if summary.verdict == "shadow":
        console.print(f"[bold]Shadow run complete. {len(summary.findings)} finding(s) would be posted.[/bold]")
    elif summary.verdict == "approve":
        console.print("[green]Vote posted: approval.[/green]")
    else:
        files = len({finding.file for finding in summary.findings})
        console.print(
            f"[yellow]Vote posted: disapproval. {len(summary.findings)} comment(s) across {files} file(s).[/yellow]"
        )
