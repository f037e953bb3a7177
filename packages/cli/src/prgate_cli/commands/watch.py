"""watch command — keep the store fresh until interrupted."""

from __future__ import annotations

import click
from rich.console import Console

from prgate_cli.runtime import get_reconciler, resolve_repos

console = Console()


@click.command("watch")
@click.option("--repo", "repos", multiple=True, help="Repository (owner/name). Repeatable; defaults to config.")
@click.option("--once", is_flag=True, help="Run every job a single time and exit.")
@click.pass_context
def watch_cmd(ctx, repos: tuple[str, ...], once: bool):
    """Run the reviewer, poll and verification workers on their configured intervals."""
    from prgate_core.watch import Watcher

    repos = resolve_repos(ctx, repos)
    watcher = Watcher(get_reconciler(ctx), repos)

    if once:
        watcher.run_once()
        return

    config = ctx.obj["config"]
    console.print(
        f"Watching {', '.join(repos)} "
        f"(poll every {config['poll_interval']}s, verify every {config['verify_interval']}s). Ctrl-C to stop."
    )
    watcher.start()
    try:
        # Event.wait() with no timeout blocks KeyboardInterrupt on some platforms.
        while not watcher.stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        console.print("Stopping workers…")
    finally:
        watcher.stop(timeout=30)
