"""Run orchestration: fetch → lint → vote → clean."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rich.console import Console
from rich.markup import escape

from lintflow_core.config import lint_configs, review_config
from lintflow_core.errors import LintflowError
from lintflow_core.gerrit import GerritReview
from lintflow_core.lint import LintDispatcher
from lintflow_core.models import Finding

console = Console()
logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """What a run did. Returned to the CLI for printing and the JSON report."""

    commit: str
    root: str
    files: list[str] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    verdict: str = "approve"  # "approve" | "disapprove" | "shadow"
    subject: str = ""
    finished_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def print_findings(findings: list[Finding]) -> None:
    """Print findings grouped by file without posting anything to Gerrit."""
    if not findings:
        console.print("[green]No findings.[/green]")
        return
    console.print(f"\n[bold]{len(findings)} finding(s)[/bold]\n")
    current = None
    for finding in findings:
        if finding.file != current:
            current = finding.file
            console.print(f"[bold cyan]{escape(finding.file)}[/bold cyan]")
        console.print(f"  line [bold]{finding.line}[/bold]  {escape(finding.details)}")


def write_report(summary: RunSummary, path: str) -> None:
    report = {
        "commit": summary.commit,
        "verdict": summary.verdict,
        "finished_at": summary.finished_at,
        "files": summary.files,
        "findings": [finding.model_dump() for finding in summary.findings],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
        f.write("\n")


def run_flow(
    commit: str,
    config: dict,
    shadow: bool = False,
    keep_workspace: bool = False,
    review: GerritReview | None = None,
    dispatcher: LintDispatcher | None = None,
) -> RunSummary:
    """Lint ``commit`` and vote on it.

    In shadow mode findings are printed and no vote is posted. The staging
    directory is removed on every exit path unless ``keep_workspace`` is set.
    Any failure propagates; nothing is retried.
    """
    dispatcher = dispatcher if dispatcher is not None else LintDispatcher(lint_configs(config))
    owns_review = review is None
    if owns_review:
        review = GerritReview(review_config(config))

    root = None
    try:
        try:
            root, files = review.fetch(commit)
        except LintflowError as e:
            # Partially staged content is cleaned below as well.
            root = e.staging_root
            raise
        summary = RunSummary(commit=commit, root=str(root), files=files)

        # Staging layout is .../{change number}/{revision id}.
        try:
            detail = review.detail(int(root.parent.name))
        except (LintflowError, ValueError) as e:
            # Non-fatal: the subject is only shown to the user.
            logger.warning("Could not fetch change detail: %s", e)
            detail = None
        if detail is not None:
            summary.subject = detail.subject
            owner = detail.owner.name or detail.owner.username or detail.owner.email or "unknown"
            console.print(
                f"[cyan]Change {detail.number}: {escape(detail.subject)}[/cyan] [dim]({escape(owner)})[/dim]"
            )

        console.print(f"Linting {len(files)} file(s) with {len(dispatcher.engines)} engine(s)...")
        summary.findings = dispatcher.run(root, files)

        if shadow:
            summary.verdict = "shadow"
            print_findings(summary.findings)
            return summary

        review.vote(commit, summary.findings)
        summary.verdict = "disapprove" if summary.findings else "approve"
        return summary
    finally:
        if root is not None and not keep_workspace:
            review.clean(root)
        if owns_review:
            review.close()
