"""status command — the dashboard read path. Reads the store only."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prgate_core.utils.timefmt import time_ago, utc_now

console = Console()

_CI_STYLE = {"success": "green", "failure": "red", "pending": "yellow"}


def _flag(value: bool) -> str:
    return "[green]✓[/green]" if value else "[dim]·[/dim]"


@click.command("status")
@click.option("--repo", default=None, help="Limit to one repository (owner/name).")
@click.option("--ready", "only_ready", is_flag=True, help="Only PRs ready for backend review.")
@click.option("--blocked", "only_blocked", is_flag=True, help="Only PRs with a change-request narrative.")
@click.option("--include-drafts", is_flag=True, help="Include draft PRs.")
@click.option("--limit", default=50, show_default=True, help="Maximum number of PRs to show.")
@click.pass_context
def status_cmd(ctx, repo: str | None, only_ready: bool, only_blocked: bool, include_drafts: bool, limit: int):
    """Show stored review and CI state for open pull requests."""
    store = ctx.obj["store"]
    prs = store.list_pull_requests(repo, state="open")
    if not include_drafts:
        prs = [pr for pr in prs if not pr.draft]
    if only_ready:
        prs = [pr for pr in prs if pr.derived and pr.derived.ready_for_backend_review]
    if only_blocked:
        prs = [pr for pr in prs if pr.derived and pr.derived.narrative]
    if not prs:
        console.print("[yellow]No matching pull requests. Run `prgate sync` to fetch them.[/yellow]")
        return

    now = utc_now()
    table = Table(title=f"Open pull requests — {repo or 'all repositories'}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=8)
    table.add_column("Title", max_width=40)
    table.add_column("Author", width=14)
    table.add_column("CI", width=9)
    table.add_column("Backend", justify="center", width=8)
    table.add_column("Ready", justify="center", width=6)
    table.add_column("Approved", justify="center", width=8)
    table.add_column("Status", max_width=50)
    table.add_column("Updated", width=10)

    for pr in prs[:limit]:
        derived = pr.derived
        ci_style = _CI_STYLE.get(pr.ci_status, "white")
        ci = f"[{ci_style}]{pr.ci_status}[/{ci_style}]"
        if pr.failed_checks:
            ci += f" ({pr.failed_checks})"
        if derived is None:
            backend = ready = approved = "[dim]?[/dim]"
            note = "[dim]not classified yet[/dim]"
        else:
            backend = _flag(derived.backend_approval_status.value == "approved")
            ready = _flag(derived.ready_for_backend_review)
            approved = _flag(derived.fully_approved)
            note = derived.narrative.describe(now)
            if derived.exempt_from_backend_review:
                note = f"[magenta]exempt[/magenta] {note}".strip()
        label = f"#{pr.number}" if repo else f"{pr.repository.split('/', 1)[-1]}#{pr.number}"
        table.add_row(
            label,
            pr.title[:40],
            pr.author,
            ci,
            backend,
            ready,
            approved,
            note,
            time_ago(pr.updated_at, now) if pr.updated_at else "",
        )

    console.print(table)
