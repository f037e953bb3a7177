"""reviewers command — show or refresh the backend review group snapshot."""

from __future__ import annotations

import click
from github import GithubException
from rich.console import Console

from prgate_cli.runtime import get_reconciler

console = Console()


@click.command("reviewers")
@click.option("--refresh/--no-refresh", default=True, show_default=True, help="Fetch the team from GitHub first.")
@click.pass_context
def reviewers_cmd(ctx, refresh: bool):
    """Show the backend review group, refreshing it from GitHub by default.

    A membership change reclassifies every open PR.
    """
    if refresh:
        reconciler = get_reconciler(ctx)
        try:
            result = reconciler.refresh_privileged_reviewers()
        except ValueError as e:
            raise click.UsageError(str(e)) from e
        except GithubException as e:
            raise click.ClickException(f"Could not fetch the review team: {e}") from e
        reviewers = result.reviewers
        if result.changed:
            console.print(f"[green]Membership changed;[/green] reclassified {result.reclassified} open PR(s).")
    else:
        reviewers = ctx.obj["store"].get_privileged_reviewers()

    if not reviewers.members:
        console.print("[yellow]No backend reviewers stored yet. Run `prgate reviewers`.[/yellow]")
        return

    console.print(f"[bold]Backend review group[/bold] (version {reviewers.version}, {len(reviewers)} member(s))")
    for login in sorted(reviewers.members):
        console.print(f"  @{login}")
