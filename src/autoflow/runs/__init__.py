"""Workflow run status, correlation and control."""

from .actions import RunController
from .correlator import Correlation, Deployment, DeploymentCorrelator
from .logs import download_run_logs, extract_log_archive, iter_log_lines, iter_run_logs
from .status import DerivedStatus, RunStatus, derive_status, is_active, is_retryable, is_terminal

__all__ = [
    "RunController",
    "Correlation",
    "Deployment",
    "DeploymentCorrelator",
    "download_run_logs",
    "extract_log_archive",
    "iter_log_lines",
    "iter_run_logs",
    "DerivedStatus",
    "RunStatus",
    "derive_status",
    "is_active",
    "is_retryable",
    "is_terminal",
]
