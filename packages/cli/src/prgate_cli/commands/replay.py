"""replay command — run a saved webhook delivery through the event handler.

The ingestion service in front of prgate stores deliveries as JSON; replaying
one is how a missed or failed event is re-applied by hand.
"""

from __future__ import annotations

import json

import click
from github import GithubException
from rich.console import Console

from prgate_cli.runtime import get_reconciler
from prgate_core.events import EventKind, parse_event

console = Console()


@click.command("replay")
@click.option("--event", "event_name", required=True, help="The X-GitHub-Event header value, e.g. pull_request.")
@click.argument("payload_file", type=click.File("r"))
@click.pass_context
def replay_cmd(ctx, event_name: str, payload_file):
    """Apply one webhook PAYLOAD_FILE (JSON) as if it had just been delivered."""
    try:
        payload = json.load(payload_file)
    except json.JSONDecodeError as e:
        raise click.UsageError(f"{payload_file.name} is not valid JSON: {e}") from e

    try:
        event = parse_event(event_name, payload)
    except (KeyError, TypeError, ValueError) as e:
        raise click.UsageError(f"Malformed {event_name} payload: {e}") from e

    if event.kind is EventKind.IGNORED:
        console.print(f"[yellow]Ignored:[/yellow] {event_name} {payload.get('action', '')}".rstrip())
        return

    try:
        results = get_reconciler(ctx).handle_event(event)
    except GithubException as e:
        raise click.ClickException(f"GitHub request failed while handling {event.kind.value}: {e}") from e

    console.print(f"[bold]{event.kind.value}[/bold] for {event.repository or '<unknown>'}")
    if not results:
        console.print("  [dim]no tracked pull requests affected[/dim]")
    for r in results:
        if r.deleted:
            console.print(f"  #{r.number} deleted")
        elif r.derived is not None:
            console.print(f"  #{r.number} {'updated' if r.changed else 'unchanged'}: {r.derived.narrative.detail or 'no blockers'}")
