"""Data models for the provisioning pipeline."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..github.client import RepoRef


class StepId(Enum):
    """Provisioning steps, in execution order."""
    ARTIFACT = "artifact"
    VARIABLES = "variables"
    SECRETS = "secrets"


STEP_ORDER: Tuple[StepId, ...] = (StepId.ARTIFACT, StepId.VARIABLES, StepId.SECRETS)


class StepState(Enum):
    """步骤执行状态"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class WorkflowArtifact:
    """The generated workflow file committed into the target repository."""
    path: str
    content: str
    commit_message: str

    @classmethod
    def for_repository(cls, repo_name: str, environment: str, content: str) -> "WorkflowArtifact":
        slug = re.sub(r"[^a-zA-Z0-9-]", "-", repo_name)
        file_name = f"{slug}-autoflow-{environment.lower()}.yml"
        return cls(
            path=f".github/workflows/{file_name}",
            content=content,
            commit_message=f"ci: Add AutoFlow workflow for {repo_name} ({environment})",
        )


@dataclass(frozen=True)
class ConfigVariable:
    name: str
    value: str


@dataclass(frozen=True)
class ConfigSecret:
    """A secret in plaintext. Only ever held in memory long enough to be sealed."""
    name: str
    plaintext_value: str

    def __repr__(self) -> str:
        return f"ConfigSecret(name={self.name!r}, plaintext_value='***')"

    @property
    def is_empty(self) -> bool:
        return not self.plaintext_value


@dataclass(frozen=True)
class SealedSecret:
    name: str
    ciphertext: str
    recipient_key_id: str


@dataclass
class StepRecord:
    step_id: StepId
    state: StepState = StepState.PENDING
    last_error: Optional[Dict[str, Any]] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id.value,
            "state": self.state.value,
            "last_error": self.last_error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


def _initial_steps() -> Dict[StepId, StepRecord]:
    return {step_id: StepRecord(step_id) for step_id in STEP_ORDER}


@dataclass
class ProvisioningAttempt:
    """
    One attempt at applying a workflow and its configuration to a repository.

    The orchestrator returns this value and takes it back on `retry`; the step
    records are only mutated by the orchestrator.
    """
    repo: RepoRef
    branch: str
    artifact: WorkflowArtifact
    variables: List[ConfigVariable] = field(default_factory=list)
    secrets: List[ConfigSecret] = field(default_factory=list)
    steps: Dict[StepId, StepRecord] = field(default_factory=_initial_steps)
    completion_signaled: bool = False
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def target_key(self) -> Tuple[str, str, str, str]:
        """Single-flight key: no two attempts may run against the same target."""
        return (self.repo.owner, self.repo.name, self.branch, self.artifact.path)

    def item_count(self, step_id: StepId) -> int:
        if step_id is StepId.ARTIFACT:
            return 1
        if step_id is StepId.VARIABLES:
            return len(self.variables)
        return sum(1 for secret in self.secrets if not secret.is_empty)

    def is_applicable(self, step_id: StepId) -> bool:
        return self.item_count(step_id) > 0

    def state_of(self, step_id: StepId) -> StepState:
        return self.steps[step_id].state

    @property
    def is_complete(self) -> bool:
        return all(
            record.state is StepState.SUCCESS
            for step_id, record in self.steps.items()
            if self.is_applicable(step_id)
        )

    @property
    def failed_step(self) -> Optional[StepId]:
        for step_id in STEP_ORDER:
            if self.steps[step_id].state is StepState.ERROR:
                return step_id
        return None

    def with_artifact(self, artifact: WorkflowArtifact) -> "ProvisioningAttempt":
        """Return a new attempt carrying `artifact`; a replaced artifact starts every step over."""
        return replace(
            self,
            artifact=artifact,
            steps=_initial_steps(),
            completion_signaled=False,
            started_at=datetime.now().isoformat(),
            attempt_id=uuid.uuid4().hex,
        )

    def to_dict(self) -> Dict[str, Any]:
        # 只记录密钥名称，绝不记录密钥值
        return {
            "attempt_id": self.attempt_id,
            "repo": self.repo.full_name,
            "branch": self.branch,
            "artifact_path": self.artifact.path,
            "commit_message": self.artifact.commit_message,
            "variables": [variable.name for variable in self.variables],
            "secrets": [secret.name for secret in self.secrets],
            "steps": [self.steps[step_id].to_dict() for step_id in STEP_ORDER],
            "complete": self.is_complete,
            "started_at": self.started_at,
        }
