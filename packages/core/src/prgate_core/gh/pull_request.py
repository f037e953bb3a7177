"""GitHub data source: fetch raw PR metadata, reviews, checks, comments and commits.

Every function here returns prgate_core.models value objects so nothing
downstream touches PyGithub objects. Errors propagate as PyGithub exceptions
(GithubException, UnknownObjectException for 404s); the reconciliation
controller decides what is transient and what is permanent.
"""

from __future__ import annotations

import logging

from github import Github, GithubException

from prgate_core.models import CheckResult, CheckStatus, Comment, Commit, PullRequest, Review, ReviewState
from prgate_core.rules.checks import suite_name_for
from prgate_core.utils.timefmt import ensure_utc

logger = logging.getLogger(__name__)

_CONCLUSION_STATUS = {
    "success": CheckStatus.SUCCESS,
    "failure": CheckStatus.FAILURE,
    "timed_out": CheckStatus.FAILURE,
    "action_required": CheckStatus.FAILURE,
    "startup_failure": CheckStatus.FAILURE,
    "cancelled": CheckStatus.CANCELLED,
    "skipped": CheckStatus.SKIPPED,
    "neutral": CheckStatus.SKIPPED,
}


def _login(user) -> str:
    # Deleted accounts come back as user=None ("ghost").
    return getattr(user, "login", None) or "ghost"


def to_pull_request(repository: str, pr) -> PullRequest:
    """Map a PyGithub PullRequest onto the metadata fields of our PullRequest."""
    if pr.state == "closed":
        state = "merged" if getattr(pr, "merged", False) else "closed"
    else:
        state = pr.state
    return PullRequest(
        repository=repository,
        number=pr.number,
        github_id=pr.id,
        title=pr.title or "",
        author=_login(pr.user),
        state=state,
        draft=bool(pr.draft),
        labels=[label.name for label in pr.labels],
        head_sha=pr.head.sha,
        base_ref=pr.base.ref,
        url=pr.html_url or "",
        created_at=ensure_utc(pr.created_at),
        updated_at=ensure_utc(pr.updated_at),
    )


def to_review(review) -> Review:
    return Review(
        id=review.id,
        author=_login(review.user),
        state=ReviewState.parse(review.state),
        submitted_at=ensure_utc(review.submitted_at),
    )


def check_run_status(status: str | None, conclusion: str | None) -> CheckStatus:
    if status != "completed":
        return CheckStatus.PENDING
    return _CONCLUSION_STATUS.get(conclusion or "", CheckStatus.UNKNOWN)


def _required_contexts(repo, base_ref: str) -> set[str]:
    """Required status check names from branch protection; empty when unprotected or forbidden."""
    if not base_ref:
        return set()
    try:
        return set(repo.get_branch(base_ref).get_required_status_checks().contexts or [])
    except GithubException as e:
        logger.debug("No required checks for %s@%s: %s", repo.full_name, base_ref, e)
        return set()


class GitHubSource:
    """Live implementation of the data-source interface the reconciler consumes."""

    def __init__(self, token: str, client: Github | None = None):
        self._gh = client if client is not None else Github(token)

    def _repo(self, repository: str):
        return self._gh.get_repo(repository)

    def list_open_pull_requests(self, repository: str, base_branch: str | None = None) -> list[PullRequest]:
        repo = self._repo(repository)
        kwargs = {"state": "open"}
        if base_branch:
            kwargs["base"] = base_branch
        return [to_pull_request(repository, pr) for pr in repo.get_pulls(**kwargs)]

    def fetch_pull_request(self, repository: str, number: int) -> PullRequest:
        return to_pull_request(repository, self._repo(repository).get_pull(number))

    def fetch_reviews(self, repository: str, number: int) -> list[Review]:
        """The complete current review list; anything absent has been deleted upstream."""
        pr = self._repo(repository).get_pull(number)
        return [to_review(r) for r in pr.get_reviews() if r.state]

    def fetch_comments(self, repository: str, number: int) -> list[Comment]:
        pr = self._repo(repository).get_pull(number)
        return [
            Comment(id=c.id, author=_login(c.user), created_at=ensure_utc(c.created_at))
            for c in pr.get_issue_comments()
        ]

    def fetch_commits(self, repository: str, number: int) -> list[Commit]:
        pr = self._repo(repository).get_pull(number)
        commits = []
        for c in pr.get_commits():
            git_author = c.commit.author
            commits.append(
                Commit(
                    sha=c.sha,
                    committed_at=ensure_utc(getattr(git_author, "date", None)),
                    author_login=getattr(c.author, "login", None),
                    author_name=getattr(git_author, "name", None),
                )
            )
        return commits

    def fetch_checks(self, repository: str, pr: PullRequest) -> list[CheckResult]:
        """Check runs plus legacy commit statuses for the PR head, unique by name.

        Results are raw: suite de-duplication happens in prgate_core.rules.checks.
        """
        if not pr.head_sha:
            return []
        repo = self._repo(repository)
        required = _required_contexts(repo, pr.base_ref)
        commit = repo.get_commit(pr.head_sha)

        checks: list[CheckResult] = []
        for run in commit.get_check_runs():
            output = getattr(run, "output", None)
            checks.append(
                CheckResult(
                    name=run.name,
                    status=check_run_status(run.status, run.conclusion),
                    required=run.name in required,
                    suite_name=suite_name_for(run.name),
                    url=run.html_url,
                    description=getattr(output, "title", None),
                )
            )
        # The combined status already holds the latest state per context.
        for status in commit.get_combined_status().statuses:
            checks.append(
                CheckResult(
                    name=status.context,
                    status=CheckStatus.parse(status.state),
                    required=status.context in required,
                    suite_name=suite_name_for(status.context),
                    url=status.target_url,
                    description=status.description,
                )
            )

        seen: set[str] = set()
        unique = []
        for check in checks:
            if check.name in seen:
                continue
            seen.add(check.name)
            unique.append(check)
        return unique

    def list_privileged_reviewers(self, org: str, team: str) -> set[str]:
        members = self._gh.get_organization(org).get_team_by_slug(team).get_members()
        return {m.login for m in members}
