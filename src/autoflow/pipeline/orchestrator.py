"""Provisioning orchestrator: applies artifact, variables and secrets as ordered steps."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Optional, Set, Tuple

from ..errors import (
    AttemptInProgressError,
    AutoFlowError,
    MalformedInputError,
    RemoteUnavailableError,
    UnknownRemoteError,
)
from .models import (
    STEP_ORDER,
    ConfigSecret,
    ConfigVariable,
    ProvisioningAttempt,
    StepId,
    StepState,
    WorkflowArtifact,
)

if TYPE_CHECKING:
    from ..github.client import GitHubClient, RepoRef
    from ..config import AppConfig
    from .attempt_log import AttemptLog
    from .content_sync import ContentSynchronizer
    from .propagator import ConfigPropagator

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[ProvisioningAttempt], None]


class ProvisioningOrchestrator:
    """
    Provisioning orchestrator.

    Runs the artifact, variables and secrets steps strictly in that order.
    A failing step is recorded as error and halts the run; later steps stay
    pending. `retry` resumes from the failed step without re-running earlier
    successes, which is safe because every executor is an idempotent upsert.
    """

    def __init__(
        self,
        synchronizer: "ContentSynchronizer",
        propagator: "ConfigPropagator",
        attempt_log: Optional["AttemptLog"] = None,
        on_complete: Optional[CompletionCallback] = None,
        attempt_budget: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.synchronizer = synchronizer
        self.propagator = propagator
        self.attempt_log = attempt_log
        self.on_complete = on_complete
        self.attempt_budget = attempt_budget
        self._clock = clock

        # 同一目标同一时间只允许一个 attempt
        self._inflight: Set[Tuple[str, str, str, str]] = set()
        self._inflight_lock = threading.Lock()

        self._executors: Dict[StepId, Callable[[ProvisioningAttempt], None]] = {
            StepId.ARTIFACT: self._apply_artifact,
            StepId.VARIABLES: self._apply_variables,
            StepId.SECRETS: self._apply_secrets,
        }

    @classmethod
    def from_config(
        cls,
        client: "GitHubClient",
        config: "AppConfig",
        on_complete: Optional[CompletionCallback] = None,
    ) -> "ProvisioningOrchestrator":
        from .attempt_log import AttemptLog
        from .content_sync import ContentSynchronizer
        from .propagator import ConfigPropagator

        pipeline = config.pipeline
        return cls(
            synchronizer=ContentSynchronizer(client),
            propagator=ConfigPropagator(client, max_workers=pipeline.max_workers),
            attempt_log=AttemptLog(Path(pipeline.log_dir)) if pipeline.log_dir else None,
            on_complete=on_complete,
            attempt_budget=pipeline.attempt_budget,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(
        self,
        repo: "RepoRef",
        artifact: WorkflowArtifact,
        variables: Iterable[ConfigVariable] = (),
        secrets: Iterable[ConfigSecret] = (),
        branch: str = "main",
    ) -> ProvisioningAttempt:
        """Create a fresh attempt and run every step."""
        attempt = ProvisioningAttempt(
            repo=repo,
            branch=branch,
            artifact=artifact,
            variables=list(variables),
            secrets=list(secrets),
        )
        self._check_unique_names(attempt)
        return self.run_steps(attempt, StepId.ARTIFACT)

    def retry(self, attempt: ProvisioningAttempt, step: StepId) -> ProvisioningAttempt:
        """Re-run `step` and everything after it. Same as `run_steps(attempt, step)`."""
        return self.run_steps(attempt, step)

    def run_steps(self, attempt: ProvisioningAttempt, from_step: StepId = StepId.ARTIFACT) -> ProvisioningAttempt:
        """
        Execute steps starting at `from_step`.

        Args:
            attempt: Attempt whose step records are updated in place
            from_step: First step to (re-)run; earlier steps keep their state

        Returns:
            ProvisioningAttempt: the same attempt, with updated step records
        """
        if attempt.state_of(from_step) in (StepState.SUCCESS, StepState.IN_PROGRESS):
            raise MalformedInputError(
                f"Step '{from_step.value}' is {attempt.state_of(from_step).value}; "
                "only failed or pending steps can be (re-)run"
            )
        start_index = STEP_ORDER.index(from_step)
        for earlier in STEP_ORDER[:start_index]:
            if attempt.state_of(earlier) is not StepState.SUCCESS:
                raise MalformedInputError(
                    f"Cannot resume at '{from_step.value}': step '{earlier.value}' "
                    f"is {attempt.state_of(earlier).value}"
                )

        self._acquire(attempt)
        try:
            self._run(attempt, start_index)
        finally:
            self._release(attempt)
        return attempt

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, attempt: ProvisioningAttempt, start_index: int) -> None:
        steps_to_run = STEP_ORDER[start_index:]

        # 重置即将执行的步骤
        for step_id in steps_to_run:
            record = attempt.steps[step_id]
            record.state = StepState.PENDING
            record.last_error = None
            record.started_at = None
            record.finished_at = None

        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 PROVISIONING %s@%s", attempt.repo, attempt.branch)
        logger.info("=" * 60)
        logger.info(f"Workflow: {attempt.artifact.path}")
        logger.info(f"Variables: {len(attempt.variables)}, Secrets: {len(attempt.secrets)}")
        logger.info(f"Starting at: {steps_to_run[0].value}")
        self._save_log(attempt, "running")

        deadline = self._clock() + self.attempt_budget if self.attempt_budget else None

        for step_id in steps_to_run:
            record = attempt.steps[step_id]
            logger.info(f"📍 Step: {step_id.value}")

            if not attempt.is_applicable(step_id):
                record.state = StepState.SUCCESS
                record.finished_at = datetime.now().isoformat()
                logger.info("   ⏭️ Nothing to apply")
                continue

            record.state = StepState.IN_PROGRESS
            record.started_at = datetime.now().isoformat()
            self._save_log(attempt, "running")

            try:
                if deadline is not None and self._clock() > deadline:
                    raise RemoteUnavailableError("Attempt budget exhausted before step could start")
                self._executors[step_id](attempt)
            except AutoFlowError as exc:
                self._record_failure(attempt, step_id, exc)
                return
            except Exception as exc:
                logger.exception("   Unexpected failure in step %s", step_id.value)
                self._record_failure(attempt, step_id, UnknownRemoteError(str(exc) or type(exc).__name__))
                return

            record.state = StepState.SUCCESS
            record.finished_at = datetime.now().isoformat()
            logger.info("   ✅ %s done", step_id.value)

        self._save_log(attempt, "success")
        self._signal_completion(attempt)

    def _record_failure(self, attempt: ProvisioningAttempt, step_id: StepId, exc: AutoFlowError) -> None:
        record = attempt.steps[step_id]
        record.state = StepState.ERROR
        record.last_error = exc.to_dict()
        record.finished_at = datetime.now().isoformat()
        logger.error("   ❌ %s failed (%s): %s", step_id.value, exc.kind.value, exc.message)
        if exc.retryable:
            logger.info("   🔄 Retry with: retry(attempt, StepId.%s)", step_id.name)
        self._save_log(attempt, "failed")

    def _signal_completion(self, attempt: ProvisioningAttempt) -> None:
        if not attempt.is_complete or attempt.completion_signaled:
            return
        attempt.completion_signaled = True
        logger.info("🎉 %s configured", attempt.repo)
        if self.on_complete:
            self.on_complete(attempt)

    def _acquire(self, attempt: ProvisioningAttempt) -> None:
        with self._inflight_lock:
            if attempt.target_key in self._inflight:
                raise AttemptInProgressError(
                    f"An attempt for {attempt.repo}@{attempt.branch} ({attempt.artifact.path}) is already running"
                )
            self._inflight.add(attempt.target_key)

    def _release(self, attempt: ProvisioningAttempt) -> None:
        with self._inflight_lock:
            self._inflight.discard(attempt.target_key)

    @staticmethod
    def _check_unique_names(attempt: ProvisioningAttempt) -> None:
        for label, names in (
            ("variable", [variable.name for variable in attempt.variables]),
            ("secret", [secret.name for secret in attempt.secrets]),
        ):
            duplicates = sorted({name for name in names if names.count(name) > 1})
            if duplicates:
                raise MalformedInputError(f"Duplicate {label} names: {', '.join(duplicates)}")

    def _save_log(self, attempt: ProvisioningAttempt, status: str) -> None:
        if self.attempt_log:
            self.attempt_log.save(attempt, status)

    # ------------------------------------------------------------------
    # Step executors
    # ------------------------------------------------------------------

    def _apply_artifact(self, attempt: ProvisioningAttempt) -> None:
        self.synchronizer.upsert_artifact(attempt.repo, attempt.artifact, attempt.branch)

    def _apply_variables(self, attempt: ProvisioningAttempt) -> None:
        self.propagator.propagate_variables(attempt.repo, attempt.variables)

    def _apply_secrets(self, attempt: ProvisioningAttempt) -> None:
        self.propagator.propagate_secrets(attempt.repo, attempt.secrets)
