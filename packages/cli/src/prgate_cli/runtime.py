"""Helpers shared by commands that talk to GitHub."""

from __future__ import annotations

import click

from prgate_core.config import validate_repo_name


def get_reconciler(ctx: click.Context):
    """Return the Reconciler for this invocation, building it on first use.

    Only commands that call GitHub need one, so a missing token is reported
    here rather than in main().
    """
    obj = ctx.find_root().obj
    if obj.get("reconciler") is None:
        from prgate_core.gh.pull_request import GitHubSource
        from prgate_core.reconcile import Reconciler

        config = obj["config"]
        token = config.get("github_token")
        if not token:
            raise click.UsageError(
                "No GitHub token found. Set GITHUB_TOKEN (or GH_TOKEN), add github_token to .prgate.yml, "
                "or run `gh auth login` to authenticate the GitHub CLI."
            )
        obj["reconciler"] = Reconciler(obj["store"], GitHubSource(token), config)
    return obj["reconciler"]


def resolve_repos(ctx: click.Context, repos: tuple[str, ...]) -> list[str]:
    """Repos given with --repo, else the configured ones. Raises UsageError if none."""
    chosen = list(repos) or list(ctx.find_root().obj["config"].get("repos") or [])
    if not chosen:
        raise click.UsageError("No repositories given. Pass --repo owner/name or set `repos` in .prgate.yml.")
    try:
        return [validate_repo_name(r) for r in chosen]
    except ValueError as e:
        raise click.UsageError(str(e)) from e
