"""Unified path constants for AutoFlow.

All local data is stored under the .autoflow directory:
- .autoflow/attempts/   # JSON logs of provisioning attempts (no secret values)
- .autoflow/logs/       # Extracted workflow run log archives
"""

from pathlib import Path

# 基础目录（在当前工作目录下）
BASE_DIR = Path(".autoflow")

ATTEMPTS_DIR = BASE_DIR / "attempts"
RUN_LOGS_DIR = BASE_DIR / "logs"


def get_run_logs_dir(run_id: int) -> Path:
    """获取某个 run 的日志解压目录."""
    target = RUN_LOGS_DIR / str(run_id)
    target.mkdir(parents=True, exist_ok=True)
    return target
