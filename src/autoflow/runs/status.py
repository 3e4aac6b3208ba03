"""Run status reconciler: maps GitHub run status/conclusion onto one enum."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DerivedStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    IN_PROGRESS = "in_progress"
    QUEUED = "queued"
    CANCELLED = "cancelled"
    NEUTRAL = "neutral"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    ACTION_REQUIRED = "action_required"
    COMPLETED = "completed"   # completed 但 conclusion 为空或未知
    UNKNOWN = "unknown"


_CONCLUSIONS = {
    "success": DerivedStatus.SUCCESS,
    "failure": DerivedStatus.FAILURE,
    "cancelled": DerivedStatus.CANCELLED,
    "skipped": DerivedStatus.SKIPPED,
    "timed_out": DerivedStatus.TIMED_OUT,
    "neutral": DerivedStatus.NEUTRAL,
    "action_required": DerivedStatus.ACTION_REQUIRED,
}

RETRYABLE = frozenset({DerivedStatus.FAILURE, DerivedStatus.CANCELLED, DerivedStatus.TIMED_OUT})
ACTIVE = frozenset({DerivedStatus.QUEUED, DerivedStatus.IN_PROGRESS})


def derive_status(status: Optional[str], conclusion: Optional[str] = None) -> DerivedStatus:
    """Never raises; anything unrecognised maps to UNKNOWN (or COMPLETED for odd conclusions)."""
    if status == "queued":
        return DerivedStatus.QUEUED
    if status == "in_progress":
        return DerivedStatus.IN_PROGRESS
    if status == "completed":
        return _CONCLUSIONS.get(conclusion or "", DerivedStatus.COMPLETED)
    return DerivedStatus.UNKNOWN


def is_retryable(status: DerivedStatus) -> bool:
    return status in RETRYABLE


def is_active(status: DerivedStatus) -> bool:
    """Whether the run may still change (keep polling)."""
    return status in ACTIVE


def is_terminal(status: DerivedStatus) -> bool:
    return not is_active(status)


@dataclass(frozen=True)
class RunStatus:
    run_id: int
    external_state: Optional[str]
    external_conclusion: Optional[str] = None
    html_url: Optional[str] = None
    path: Optional[str] = None

    @property
    def derived_status(self) -> DerivedStatus:
        # 每次读取都重新计算，不单独保存
        return derive_status(self.external_state, self.external_conclusion)

    @property
    def retryable(self) -> bool:
        return is_retryable(self.derived_status)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RunStatus":
        return cls(
            run_id=payload["id"],
            external_state=payload.get("status"),
            external_conclusion=payload.get("conclusion"),
            html_url=payload.get("html_url"),
            path=payload.get("path"),
        )
