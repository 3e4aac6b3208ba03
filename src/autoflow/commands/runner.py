"""Restricted execution of read-only deployment-platform CLI commands."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import CommandRejectedError, MalformedInputError

logger = logging.getLogger(__name__)

# 只允许只读子命令：命令参数必须以其中某个前缀开头
COMMAND_ALLOWLIST: Dict[str, List[Tuple[str, ...]]] = {
    "vercel": [
        ("projects", "list"),
        ("domains", "ls"),
        ("logs",),
        ("deployments", "ls"),
    ],
    "railway": [
        ("projects",),
        ("services",),
        ("logs",),
        ("status",),
    ],
}

TOKEN_ENV = {
    "vercel": "VERCEL_TOKEN",
    "railway": "RAILWAY_TOKEN",
}


@dataclass
class CommandResult:
    """Output of an allowed command. `error` is True for a non-zero exit."""

    output: str
    error: bool
    exit_code: int


def parse_command(command: str) -> Tuple[str, List[str]]:
    """Split `command` and check it against the allowlist without running anything."""
    if not isinstance(command, str) or not command.strip():
        raise MalformedInputError("Command must be a non-empty string.")

    parts = command.split()
    cli, args = parts[0], parts[1:]
    if cli not in COMMAND_ALLOWLIST:
        raise CommandRejectedError(command, f"Invalid CLI tool. Must be one of: {', '.join(COMMAND_ALLOWLIST)}.")

    allowed = any(
        len(args) >= len(prefix) and tuple(args[: len(prefix)]) == prefix
        for prefix in COMMAND_ALLOWLIST[cli]
    )
    if not allowed:
        raise CommandRejectedError(command, "Only specific read-only commands are permitted.")
    return cli, args


class RestrictedCommandRunner:
    """Runs allowlisted `vercel` / `railway` commands with the caller's token."""

    def __init__(self, bin_dir: Optional[Path] = None, base_env: Optional[Mapping[str, str]] = None) -> None:
        self.bin_dir = bin_dir
        self.base_env = dict(base_env) if base_env is not None else dict(os.environ)

    def executable(self, cli: str) -> str:
        if self.bin_dir is not None:
            return str((self.bin_dir / cli).resolve())
        return cli

    def run(self, command: str, token: str, timeout: Optional[float] = 120) -> CommandResult:
        cli, args = parse_command(command)
        if not isinstance(token, str) or not token.strip():
            raise MalformedInputError("A valid token must be provided.")

        env = dict(self.base_env)
        env[TOKEN_ENV[cli]] = token
        return self._run([self.executable(cli), *args], env, timeout)

    def _run(self, argv: Sequence[str], env: Dict[str, str], timeout: Optional[float]) -> CommandResult:
        logger.info("$ %s", " ".join(argv[1:]) if len(argv) > 1 else argv[0])
        try:
            process = subprocess.run(
                list(argv),
                env=env,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss: %s", timeout, argv[0])
            return CommandResult(output=f"Command timed out after {timeout}s", error=True, exit_code=-1)
        except OSError as exc:
            # 可执行文件不存在或无权限
            logger.warning("Failed to start %s: %s", argv[0], exc)
            return CommandResult(output=f"Server error executing command: {exc}", error=True, exit_code=-1)
        if process.returncode != 0:
            output = process.stderr.strip() or f"Command exited with code {process.returncode}"
            return CommandResult(output=output, error=True, exit_code=process.returncode)
        return CommandResult(output=process.stdout, error=False, exit_code=0)
