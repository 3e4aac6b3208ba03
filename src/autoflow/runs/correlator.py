"""Joins deployments to the workflow runs triggered by the same commit."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from ..github.client import GitHubClient, RepoRef

logger = logging.getLogger(__name__)

DEPLOYMENT_PENDING = "pending"
DEPLOYMENT_IN_PROGRESS = "in_progress"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class Deployment:
    """A deployment record, optionally linked to the run built from its commit."""
    id: int
    commit_sha: str
    ref: str
    created_at: str
    updated_at: str
    environment: Optional[str] = None
    statuses_url: Optional[str] = None
    state: str = DEPLOYMENT_PENDING
    correlated_run_id: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Deployment":
        return cls(
            id=payload["id"],
            commit_sha=payload["sha"],
            ref=payload.get("ref", ""),
            created_at=payload.get("created_at", ""),
            updated_at=payload.get("updated_at", ""),
            environment=payload.get("environment"),
            statuses_url=payload.get("statuses_url"),
        )

    @property
    def duration(self) -> str:
        """Elapsed time between creation and last update, e.g. '2m 5s'."""
        if self.state == DEPLOYMENT_IN_PROGRESS:
            return "..."
        created, updated = _parse_time(self.created_at), _parse_time(self.updated_at)
        if not created or not updated:
            return "..."
        seconds = max(0, int((updated - created).total_seconds()))
        return f"{seconds // 60}m {seconds % 60}s"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "commit_sha": self.commit_sha,
            "ref": self.ref,
            "environment": self.environment,
            "state": self.state,
            "duration": self.duration,
            "run_id": self.correlated_run_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Correlation:
    """Outcome of a correlation. `matched` is False while no run exists yet."""
    deployment_id: int
    run_id: Optional[int] = None
    candidates: List[int] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.run_id is not None


class DeploymentCorrelator:
    """
    Finds the workflow run for a deployment by its head commit.

    Deployments and runs share no foreign key, so this is a best-effort,
    eventually consistent join: right after a deployment is created there is
    often no run yet. Callers re-poll later rather than retrying immediately.
    """

    def __init__(self, client: "GitHubClient", max_workers: int = 4):
        self.client = client
        self.max_workers = max(1, max_workers)

    def correlate(
        self, repo: "RepoRef", deployment: Deployment, workflow_path: Optional[str] = None
    ) -> Correlation:
        runs = [
            run for run in self.client.list_runs(repo, head_sha=deployment.commit_sha)
            if run.get("head_sha") == deployment.commit_sha
        ]
        if not runs:
            logger.debug("No run for deployment %s (%s) yet", deployment.id, deployment.commit_sha[:7])
            return Correlation(deployment_id=deployment.id)

        if workflow_path:
            # 同一 commit 可能触发多个 workflow，优先路径匹配的那个
            preferred = [run for run in runs if workflow_path in (run.get("path") or "")]
            runs = preferred or runs

        runs.sort(key=lambda run: run.get("created_at") or "", reverse=True)
        chosen = runs[0]["id"]
        deployment.correlated_run_id = chosen
        return Correlation(
            deployment_id=deployment.id,
            run_id=chosen,
            candidates=[run["id"] for run in runs],
        )

    def latest_state(self, deployment: Deployment) -> str:
        if not deployment.statuses_url:
            return DEPLOYMENT_PENDING
        statuses = self.client.list_deployment_statuses(deployment.statuses_url)
        # 状态列表按时间倒序，第一条即最新
        return statuses[0].get("state", DEPLOYMENT_PENDING) if statuses else DEPLOYMENT_PENDING

    def list_deployments(
        self, repo: "RepoRef", workflow_path: Optional[str] = None, per_page: int = 30
    ) -> List[Deployment]:
        """List deployments with their latest state and correlated run."""
        deployments = [Deployment.from_payload(item) for item in self.client.list_deployments(repo, per_page)]

        def enrich(deployment: Deployment) -> Deployment:
            deployment.state = self.latest_state(deployment)
            self.correlate(repo, deployment, workflow_path=workflow_path)
            return deployment

        if not deployments:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(deployments))) as pool:
            return list(pool.map(enrich, deployments))
