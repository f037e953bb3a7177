"""Where prgate finds its GitHub token.

Sources are tried in order and the first non-empty one wins:

  GITHUB_TOKEN     environment (Actions, cron hosts)
  GH_TOKEN         environment, the name the gh CLI itself reads
  github_token     key in .prgate.yml
  gh auth token    the local GitHub CLI session
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
_GH_TIMEOUT = 5


def _gh_cli_token() -> str | None:
    try:
        result = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=_GH_TIMEOUT)
    except FileNotFoundError:
        logger.debug("gh CLI not installed")
        return None
    except subprocess.TimeoutExpired:
        logger.warning("`gh auth token` did not answer within %ds", _GH_TIMEOUT)
        return None
    if result.returncode != 0:
        logger.debug("gh CLI has no usable session (exit %s)", result.returncode)
        return None
    return result.stdout


def resolve_github_token(configured: str | None = None) -> str | None:
    """Return the first available token, or None when every source is empty.

    `configured` is the `github_token` value from .prgate.yml. The gh CLI is
    only spawned when nothing earlier produced a token.
    """
    sources = [(f"${name}", lambda name=name: os.environ.get(name)) for name in TOKEN_ENV_VARS]
    sources.append((".prgate.yml", lambda: configured))
    sources.append(("gh CLI session", _gh_cli_token))

    for label, read in sources:
        token = (read() or "").strip()
        if token:
            logger.debug("Using GitHub token from %s", label)
            return token
    return None
