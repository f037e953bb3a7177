import os
from pathlib import Path
from typing import Optional

import yaml

from prgate_core.classify import DEFAULT_EXEMPT_LABEL
from prgate_core.rules.readiness import DEFAULT_INFRASTRUCTURE_CHECKS

DEFAULT_CONFIG: dict = {
    "repos": [],  # "owner/name" entries tracked by sync / verify / watch
    "org": None,  # defaults to the owner of the first repo
    "team": "backend-review-group",
    "base_branch": None,  # None = track PRs against every base branch
    "store_path": ".prgate.db",
    "poll_interval": 300,
    "verify_interval": 900,
    "reviewers_interval": 3600,
    "verify_sample_size": 20,
    "verify_strategy": "recent",  # "recent" | "random"
    "lease_ttl": 1800,
    "failing_checks_ttl": 3600,
    "infrastructure_checks": list(DEFAULT_INFRASTRUCTURE_CHECKS),
    "exempt_label": DEFAULT_EXEMPT_LABEL,
}

VERIFY_STRATEGIES = ("recent", "random")


def load_config(config_path: str = ".prgate.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prgate.yml in the current directory
      3. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "repos": list(DEFAULT_CONFIG["repos"]),
        "infrastructure_checks": list(DEFAULT_CONFIG["infrastructure_checks"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if config["verify_strategy"] not in VERIFY_STRATEGIES:
        raise ValueError(
            f"Unknown verify_strategy: {config['verify_strategy']!r}. Choose one of {', '.join(VERIFY_STRATEGIES)}."
        )
    for repo in config["repos"]:
        validate_repo_name(repo)

    if not config.get("org") and config["repos"]:
        config["org"] = config["repos"][0].split("/", 1)[0]

    config["github_token"] = os.environ.get("GITHUB_TOKEN") or config.get("github_token")

    return config


def validate_repo_name(full_name: str) -> str:
    normalized = (full_name or "").strip()
    owner, _, name = normalized.partition("/")
    if not owner or not name or "/" in name:
        raise ValueError(f"Invalid repository name: {full_name!r}. Expected owner/name.")
    return normalized
