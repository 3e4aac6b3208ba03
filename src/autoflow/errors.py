"""Error taxonomy shared by the provisioning pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Structured error codes. Callers branch on these, never on message text."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    NOT_AUTHORIZED = "not_authorized"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    INVALID_RECIPIENT_KEY = "invalid_recipient_key"
    MALFORMED_INPUT = "malformed_input"
    UNKNOWN = "unknown"


_RETRYABLE = {ErrorKind.CONFLICT, ErrorKind.REMOTE_UNAVAILABLE}


class AutoFlowError(RuntimeError):
    """Base class for every error raised by autoflow."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
        }


class NotFoundError(AutoFlowError):
    """The remote resource does not exist (an expected branch, not a failure)."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(AutoFlowError):
    """A conditional write carried a stale content identifier."""

    kind = ErrorKind.CONFLICT


class NotAuthorizedError(AutoFlowError):
    """The token lacks the scope or permission for the request."""

    kind = ErrorKind.NOT_AUTHORIZED


class RemoteUnavailableError(AutoFlowError):
    """Network failure, rate limit or 5xx from the remote."""

    kind = ErrorKind.REMOTE_UNAVAILABLE


class InvalidRecipientKeyError(AutoFlowError):
    kind = ErrorKind.INVALID_RECIPIENT_KEY


class MalformedInputError(AutoFlowError):
    kind = ErrorKind.MALFORMED_INPUT


class UnknownRemoteError(AutoFlowError):
    kind = ErrorKind.UNKNOWN


class AttemptInProgressError(AutoFlowError):
    """Raised when a second attempt targets a repository configuration already being applied."""

    kind = ErrorKind.CONFLICT

    @property
    def retryable(self) -> bool:
        return False


class CommandRejectedError(AutoFlowError):
    """Raised when a command does not match the read-only allowlist."""

    kind = ErrorKind.NOT_AUTHORIZED

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Command not allowed: '{command}'. {reason}")


def error_for_status(status_code: int, message: str) -> AutoFlowError:
    """Map an HTTP status code onto the error taxonomy."""
    if status_code == 404:
        return NotFoundError(message, status_code)
    if status_code == 409:
        return ConflictError(message, status_code)
    if status_code in (401, 403):
        return NotAuthorizedError(message, status_code)
    if status_code == 429 or status_code >= 500:
        return RemoteUnavailableError(message, status_code)
    if 400 <= status_code < 500:
        return MalformedInputError(message, status_code)
    return UnknownRemoteError(message, status_code)
