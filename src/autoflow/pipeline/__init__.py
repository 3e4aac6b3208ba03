"""Provisioning pipeline.

- ContentSynchronizer: compare-and-swap upsert of the workflow file
- ConfigPropagator: upserts Actions variables and sealed secrets
- ProvisioningOrchestrator: runs those as ordered, resumable steps
- ProvisioningAttempt/StepRecord: explicit per-attempt step state
"""

from .models import (
    STEP_ORDER,
    ConfigSecret,
    ConfigVariable,
    ProvisioningAttempt,
    SealedSecret,
    StepId,
    StepRecord,
    StepState,
    WorkflowArtifact,
)
from .attempt_log import AttemptLog
from .content_sync import ContentSynchronizer
from .propagator import ConfigPropagator, upsert
from .orchestrator import ProvisioningOrchestrator

__all__ = [
    "STEP_ORDER",
    "ConfigSecret",
    "ConfigVariable",
    "ProvisioningAttempt",
    "SealedSecret",
    "StepId",
    "StepRecord",
    "StepState",
    "WorkflowArtifact",
    "AttemptLog",
    "ContentSynchronizer",
    "ConfigPropagator",
    "upsert",
    "ProvisioningOrchestrator",
]
