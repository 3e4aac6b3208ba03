"""Configuration loading utilities for AutoFlow."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .paths import ATTEMPTS_DIR

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/autoflow.json")

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"


@dataclass
class GitHubConfig:
    """Connection settings for the GitHub REST API."""

    token: Optional[str] = None
    api_url: str = GITHUB_API_URL
    api_version: str = GITHUB_API_VERSION
    timeout: int = 30               # 单次请求的 socket 超时（秒）
    max_retries: int = 3            # RemoteUnavailable 的重试次数
    backoff_seconds: float = 1.0    # 指数退避的基数


@dataclass
class PipelineConfig:
    """Settings for provisioning attempts."""

    default_branch: str = "main"
    max_workers: int = 4                    # 变量/密钥并发写入的线程数
    attempt_budget: Optional[float] = None  # 整个 attempt 的时间预算（秒），None 表示不限制
    log_dir: Optional[str] = str(ATTEMPTS_DIR)


@dataclass
class RunsConfig:
    """Settings for run status polling."""

    poll_interval: float = 10.0


@dataclass
class CommandsConfig:
    """Settings for the restricted command surface."""

    bin_dir: str = "node_modules/.bin"


@dataclass
class AppConfig:
    """Top-level configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    runs: RunsConfig = field(default_factory=RunsConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def _section(name: str) -> Dict[str, Any]:
            section = payload.get(name, {}) or {}
            # 过滤掉以下划线开头的注释字段
            return {k: v for k, v in section.items() if not k.startswith("_")}

        return cls(
            github=GitHubConfig(**{**GitHubConfig().__dict__, **_section("github")}),
            pipeline=PipelineConfig(**{**PipelineConfig().__dict__, **_section("pipeline")}),
            runs=RunsConfig(**{**RunsConfig().__dict__, **_section("runs")}),
            commands=CommandsConfig(**{**CommandsConfig().__dict__, **_section("commands")}),
        )


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    A missing default file yields the built-in defaults; an explicit `path`
    that does not exist is an error.

    Environment variables (higher priority than config file):
    - AUTOFLOW_GITHUB_TOKEN or GITHUB_TOKEN: GitHub API token
    - AUTOFLOW_GITHUB_API_URL: API base URL (GitHub Enterprise)
    - AUTOFLOW_DEFAULT_BRANCH: Branch the workflow file is committed to
    - AUTOFLOW_POLL_INTERVAL: Seconds between run status polls
    """

    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate = Path(path) if path else _DEFAULT_CONFIG_PATH
    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            config = AppConfig.from_dict(json.load(handle))
    else:
        config = AppConfig()

    if not config.github.token:
        config.github.token = os.getenv("AUTOFLOW_GITHUB_TOKEN") or os.getenv("GITHUB_TOKEN")

    env_api_url = os.getenv("AUTOFLOW_GITHUB_API_URL")
    if env_api_url:
        config.github.api_url = env_api_url.rstrip("/")

    env_branch = os.getenv("AUTOFLOW_DEFAULT_BRANCH")
    if env_branch:
        config.pipeline.default_branch = env_branch

    env_interval = os.getenv("AUTOFLOW_POLL_INTERVAL")
    if env_interval:
        config.runs.poll_interval = float(env_interval)

    return config
