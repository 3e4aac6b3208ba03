"""Restricted command execution."""

from .runner import COMMAND_ALLOWLIST, TOKEN_ENV, CommandResult, RestrictedCommandRunner, parse_command

__all__ = ["COMMAND_ALLOWLIST", "TOKEN_ENV", "CommandResult", "RestrictedCommandRunner", "parse_command"]
