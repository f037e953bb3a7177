"""verify command: compare stored review state with GitHub for a sample of PRs."""

from __future__ import annotations

import click
from rich.console import Console

from prgate_cli.runtime import get_reconciler, resolve_repos
from prgate_core.config import VERIFY_STRATEGIES

console = Console()


@click.command("verify")
@click.option("--repo", "repos", multiple=True, help="Repository (owner/name). Repeatable; defaults to config.")
@click.option("--sample-size", type=int, default=None, help="PRs to check per repository. Overrides config.")
@click.option(
    "--strategy",
    type=click.Choice(VERIFY_STRATEGIES),
    default=None,
    help="Pick the most recently updated PRs or a random sample. Overrides config.",
)
@click.pass_context
def verify_cmd(ctx, repos: tuple[str, ...], sample_size: int | None, strategy: str | None):
    """Re-fetch reviews for a sample of open PRs and auto-correct any drift."""
    repos = resolve_repos(ctx, repos)
    reconciler = get_reconciler(ctx)

    for repo in repos:
        report = reconciler.verify_sample(repo, sample_size=sample_size, strategy=strategy)
        console.print(
            f"[bold]{repo}[/bold]: verified {report.verified}, "
            f"{len(report.discrepancies)} with discrepancies, {len(report.corrected)} corrected"
        )
        for number, issues in report.discrepancies.items():
            mark = "[green]fixed[/green]" if number in report.corrected else "[yellow]noted[/yellow]"
            console.print(f"  #{number} ({mark})")
            for issue in issues:
                console.print(f"    - {issue}")
        for number in report.deleted:
            console.print(f"  #{number} [dim]deleted (gone upstream)[/dim]")
        for error in report.errors:
            console.print(f"  [red]✗[/red] {error}")
