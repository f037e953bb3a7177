"""sync and refresh commands: pull fresh data from GitHub into the store."""

from __future__ import annotations

import click
from github import GithubException
from rich.console import Console

from prgate_cli.runtime import get_reconciler, resolve_repos
from prgate_core.utils.timefmt import utc_now

console = Console()


@click.command("sync")
@click.option("--repo", "repos", multiple=True, help="Repository (owner/name). Repeatable; defaults to config.")
@click.option("--base-branch", default=None, help="Only track PRs against this base branch. Overrides config.")
@click.option("--skip-reviewers", is_flag=True, help="Do not refresh the backend review group first.")
@click.pass_context
def sync_cmd(ctx, repos: tuple[str, ...], base_branch: str | None, skip_reviewers: bool):
    """Poll repositories and refresh every open pull request."""
    repos = resolve_repos(ctx, repos)
    reconciler = get_reconciler(ctx)
    if base_branch:
        reconciler.config["base_branch"] = base_branch

    if not skip_reviewers:
        try:
            refresh = reconciler.refresh_privileged_reviewers()
        except ValueError as e:
            raise click.UsageError(str(e)) from e
        console.print(f"Backend review group: [bold]{len(refresh.reviewers)}[/bold] member(s)")

    failed = False
    for repo in repos:
        result = reconciler.poll_repository(repo)
        if result.skipped:
            console.print(f"[yellow]{repo}: another sync holds the lease, skipped.[/yellow]")
            continue
        console.print(
            f"[bold]{repo}[/bold]: {result.refreshed} refreshed, {result.closed} closed, {result.deleted} deleted"
        )
        for error in result.errors:
            failed = True
            console.print(f"  [red]✗[/red] {error}")

    if failed:
        ctx.exit(1)


@click.command("refresh")
@click.option("--repo", required=True, help="Repository (owner/name).")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def refresh_cmd(ctx, repo: str, pr_number: int):
    """Refresh a single pull request and print its derived state."""
    (repo,) = resolve_repos(ctx, (repo,))
    reconciler = get_reconciler(ctx)
    try:
        result = reconciler.refresh_pull_request(repo, pr_number)
    except GithubException as e:
        raise click.ClickException(f"GitHub request failed for {repo}#{pr_number}: {e}") from e

    if result.deleted:
        console.print(f"[yellow]{repo}#{pr_number} no longer exists on GitHub; removed from the store.[/yellow]")
        return

    derived = result.derived
    console.print(f"[bold]{repo}#{pr_number}[/bold]")
    console.print(f"  backend approval: {derived.backend_approval_status.value}")
    console.print(f"  ready for backend review: {'yes' if derived.ready_for_backend_review else 'no'}")
    console.print(f"  fully approved: {'yes' if derived.fully_approved else 'no'}")
    if derived.narrative:
        console.print(f"  {derived.narrative.describe(utc_now())}")
