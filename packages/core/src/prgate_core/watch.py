"""Long-running refresh workers.

Each periodic job (repository poll, sampled verification, reviewer-set
refresh) runs on its own thread so a slow job never delays the others. All
workers share one stop Event: they sleep on it between runs, and the poll
checks it between PRs so shutdown does not wait for a full scan.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from github import GithubException

from prgate_core.reconcile import Reconciler

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    name: str
    interval: float
    run: Callable[[], object]


class Watcher:
    def __init__(self, reconciler: Reconciler, repos: list[str], stop_event: threading.Event | None = None):
        self.reconciler = reconciler
        self.repos = list(repos)
        self.stop_event = stop_event or threading.Event()
        self._threads: list[threading.Thread] = []

    def jobs(self) -> list[_Job]:
        config = self.reconciler.config
        return [
            _Job("reviewers", config["reviewers_interval"], self.refresh_reviewers),
            _Job("poll", config["poll_interval"], self.poll_all),
            _Job("verify", config["verify_interval"], self.verify_all),
        ]

    def refresh_reviewers(self) -> None:
        self.reconciler.refresh_privileged_reviewers()

    def poll_all(self) -> None:
        for repo in self.repos:
            if self.stop_event.is_set():
                return
            self.reconciler.poll_repository(repo, should_stop=self.stop_event.is_set)

    def verify_all(self) -> None:
        for repo in self.repos:
            if self.stop_event.is_set():
                return
            self.reconciler.verify_sample(repo)

    def run_once(self) -> None:
        """Run every job a single time, in dependency order, on the calling thread."""
        for job in self.jobs():
            self._run_job(job)

    def _run_job(self, job: _Job) -> None:
        try:
            job.run()
        except (GithubException, ValueError) as e:
            logger.error("%s job failed: %s", job.name, e)
        except Exception:
            # Keep the worker alive; the next interval retries.
            logger.exception("%s job crashed", job.name)

    def _loop(self, job: _Job) -> None:
        logger.info("Starting %s worker (every %ss)", job.name, job.interval)
        while not self.stop_event.is_set():
            self._run_job(job)
            self.stop_event.wait(job.interval)
        logger.info("%s worker stopped", job.name)

    def start(self) -> None:
        for job in self.jobs():
            thread = threading.Thread(target=self._loop, args=(job,), name=f"prgate-{job.name}", daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
