"""Run control: status lookup, polling, rerun, cancel and dispatch."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable, Dict, Iterator, Optional

from ..errors import MalformedInputError
from .status import DerivedStatus, RunStatus, is_active

if TYPE_CHECKING:
    from ..github.client import GitHubClient, RepoRef

logger = logging.getLogger(__name__)


class RunController:
    """Wraps the workflow run endpoints with status-driven eligibility checks."""

    def __init__(
        self,
        client: "GitHubClient",
        poll_interval: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self._sleep = sleep

    def status(self, repo: "RepoRef", run_id: int) -> RunStatus:
        return RunStatus.from_payload(self.client.get_run(repo, run_id))

    def poll(self, repo: "RepoRef", run_id: int, max_polls: Optional[int] = None) -> Iterator[RunStatus]:
        """
        Yield the run status every `poll_interval` seconds.

        Stops after the first terminal status; the caller can also stop early by
        simply not pulling further.
        """
        polls = 0
        while True:
            current = self.status(repo, run_id)
            polls += 1
            yield current
            if not is_active(current.derived_status):
                return
            if max_polls is not None and polls >= max_polls:
                return
            self._sleep(self.poll_interval)

    def wait(self, repo: "RepoRef", run_id: int, max_polls: Optional[int] = None) -> RunStatus:
        """Poll until the run finishes (or `max_polls` is reached) and return the last status."""
        polls = self.poll(repo, run_id, max_polls=max_polls)
        last = next(polls)
        logger.info("Run %s: %s", run_id, last.derived_status.value)
        for last in polls:
            logger.info("Run %s: %s", run_id, last.derived_status.value)
        return last

    def rerun(self, repo: "RepoRef", run: RunStatus) -> str:
        """
        Rerun a finished run.

        Failed runs only rerun their failed jobs; cancelled or timed out runs
        are rerun in full.

        Returns:
            "failed_jobs" or "full"
        """
        derived = run.derived_status
        if not run.retryable:
            raise MalformedInputError(f"Run {run.run_id} is {derived.value} and cannot be rerun")
        if derived is DerivedStatus.FAILURE:
            self.client.rerun_failed_jobs(repo, run.run_id)
            logger.info("🔄 Rerunning failed jobs of run %s", run.run_id)
            return "failed_jobs"
        self.client.rerun_run(repo, run.run_id)
        logger.info("🔄 Rerunning run %s", run.run_id)
        return "full"

    def cancel(self, repo: "RepoRef", run: RunStatus) -> None:
        if not is_active(run.derived_status):
            raise MalformedInputError(
                f"Run {run.run_id} is {run.derived_status.value}; only queued or running runs can be cancelled"
            )
        self.client.cancel_run(repo, run.run_id)
        logger.info("⏹️ Cancel requested for run %s", run.run_id)

    def dispatch(
        self, repo: "RepoRef", workflow_id: str, ref: str, inputs: Optional[Dict[str, str]] = None
    ) -> None:
        """Trigger a workflow_dispatch event. `workflow_id` may be the file name."""
        self.client.dispatch_workflow(repo, workflow_id, ref, inputs=inputs)
        logger.info("▶️ Dispatched %s on %s", workflow_id, ref)
