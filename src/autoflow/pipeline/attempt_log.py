"""JSON log of provisioning attempts."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models import ProvisioningAttempt

logger = logging.getLogger(__name__)


class AttemptLog:
    """
    Writes one JSON file per attempt under `log_dir`.

    Only names of secrets are recorded (see ProvisioningAttempt.to_dict).
    """

    def __init__(self, log_dir: Path):
        self.log_dir = Path(log_dir)

    def path_for(self, attempt: "ProvisioningAttempt") -> Path:
        # 文件名只由 attempt 自身决定：同一 attempt 始终写同一个文件
        started = attempt.started_at[:19].replace("-", "").replace(":", "").replace("T", "_")
        name = f"provision_{attempt.repo.owner}_{attempt.repo.name}_{started}_{attempt.attempt_id[:12]}.json"
        return self.log_dir / name

    def save(self, attempt: "ProvisioningAttempt", status: str) -> Path:
        path = self.path_for(attempt)
        payload = attempt.to_dict()
        payload["status"] = status
        payload["updated_at"] = datetime.now().isoformat()
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.warning(f"Failed to save attempt log: {e}")
        return path

    def list_logs(self) -> List[Path]:
        if not self.log_dir.exists():
            return []
        return sorted(self.log_dir.glob("provision_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)

    @staticmethod
    def read(path: Path) -> Optional[dict]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError):
            return None
