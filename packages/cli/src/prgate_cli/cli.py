"""CLI entry point for prgate.

Commands:
  sync           — poll tracked repositories and refresh every open PR
  refresh        — refresh a single pull request
  verify         — re-check a sample of PRs against GitHub and auto-correct
  reviewers      — refresh the backend review group snapshot
  status         — show stored PR state (dashboard read path, no GitHub calls)
  discrepancies  — show the verification discrepancy log
  replay         — feed a saved webhook payload through the event handler
  watch          — run the poll, verification and reviewer workers until interrupted
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prgate_cli.commands.discrepancies import discrepancies_cmd
from prgate_cli.commands.replay import replay_cmd
from prgate_cli.commands.reviewers import reviewers_cmd
from prgate_cli.commands.status import status_cmd
from prgate_cli.commands.sync import refresh_cmd, sync_cmd
from prgate_cli.commands.verify import verify_cmd
from prgate_cli.commands.watch import watch_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the SQLite store at `store_path` from .prgate.yml.

    This factory lives in cli.py so neither prgate_core nor prgate_store
    know about the CLI config format.
    """
    from prgate_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path") or ".prgate.db")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose, rich_tracebacks=verbose)],
        force=True,
    )
    # PyGithub and urllib3 are chatty at DEBUG.
    for noisy in ("github", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.INFO if verbose else logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prgate"),
    prog_name="prgate",
)
@click.option(
    "--config",
    "config_path",
    default=".prgate.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRGATE_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Track GitHub pull request review and CI state for backend review."""
    from prgate_core.config import load_config
    from prgate_cli.auth import resolve_github_token

    ctx.ensure_object(dict)
    _configure_logging(verbose)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    # Resolve once so every subcommand sees the same token.
    config["github_token"] = resolve_github_token(config.get("github_token"))

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(sync_cmd)
main.add_command(refresh_cmd)
main.add_command(verify_cmd)
main.add_command(reviewers_cmd)
main.add_command(status_cmd)
main.add_command(discrepancies_cmd)
main.add_command(replay_cmd)
main.add_command(watch_cmd)
