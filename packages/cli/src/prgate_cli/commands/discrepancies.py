"""discrepancies command — display the verification log from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("discrepancies")
@click.option("--repo", default=None, help="Limit to one repository (owner/name).")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def discrepancies_cmd(ctx, repo: str | None, limit: int):
    """Show mismatches found by `prgate verify`, most recent first."""
    records = ctx.obj["store"].list_discrepancies(repo, limit=limit)
    if not records:
        console.print("[green]No discrepancies recorded.[/green]")
        return

    table = Table(title="Verification discrepancies", show_header=True, header_style="bold cyan")
    table.add_column("Repository")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Detected At", width=20)
    table.add_column("Fixed", justify="center", width=6)
    table.add_column("Issues")

    for r in records:
        table.add_row(
            r.repository,
            f"#{r.pr_number}",
            r.detected_at[:19].replace("T", " "),
            "[green]yes[/green]" if r.corrected else "[yellow]no[/yellow]",
            "\n".join(r.issues),
        )

    console.print(table)
