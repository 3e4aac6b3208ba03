"""Repository content synchronizer: compare-and-swap upsert of a single file."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..errors import NotFoundError

if TYPE_CHECKING:
    from ..github.client import GitHubClient, RepoRef
    from .models import WorkflowArtifact

logger = logging.getLogger(__name__)

WORKFLOWS_DIR = ".github/workflows"


def encode_content(content: str) -> str:
    """Base64 encode UTF-8 text the way the contents API expects it."""
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def decode_content(payload: Dict[str, Any]) -> Optional[str]:
    if payload.get("encoding") != "base64" or payload.get("content") is None:
        return None
    try:
        # API 返回的 base64 带换行
        return base64.b64decode(payload["content"].replace("\n", "")).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None


@dataclass
class RemoteFile:
    """What was observed at path@branch before writing."""
    sha: str
    content: Optional[str] = None


class ContentSynchronizer:
    """
    Upserts files through the contents API.

    The current blob sha is read first and sent back with the write; if the
    file changed in between, the remote rejects the write and a ConflictError
    propagates. Nothing is ever overwritten blindly.
    """

    def __init__(self, client: "GitHubClient"):
        self.client = client

    def read(self, repo: "RepoRef", path: str, branch: str) -> Optional[RemoteFile]:
        """Return the file at `path` on `branch`, or None if it does not exist."""
        try:
            existing = self.client.get_file(repo, path, ref=branch)
        except NotFoundError:
            logger.debug("%s does not exist on %s@%s yet", path, repo, branch)
            return None
        # 路径是目录时 API 返回列表
        if not isinstance(existing, dict) or not existing.get("sha"):
            return None
        return RemoteFile(sha=existing["sha"], content=decode_content(existing))

    def upsert_file(
        self, repo: "RepoRef", path: str, content: str, branch: str, commit_message: str
    ) -> bool:
        """Create or update `path`. Returns False when the remote already held `content`."""
        current = self.read(repo, path, branch)
        if current is not None and current.content == content:
            logger.info("   %s on %s@%s is already up to date", path, repo, branch)
            return False

        logger.info("   %s %s on %s@%s", "Updating" if current else "Creating", path, repo, branch)
        self.client.put_file(
            repo,
            path,
            encode_content(content),
            message=commit_message,
            branch=branch,
            sha=current.sha if current else None,
        )
        return True

    def upsert_artifact(self, repo: "RepoRef", artifact: "WorkflowArtifact", branch: str) -> bool:
        return self.upsert_file(repo, artifact.path, artifact.content, branch, artifact.commit_message)

    def has_workflows(self, repo: "RepoRef", branch: Optional[str] = None) -> bool:
        """Whether the repository already has a workflows directory."""
        try:
            if branch:
                self.client.get_file(repo, WORKFLOWS_DIR, ref=branch)
            else:
                self.client.request("GET", f"/repos/{repo}/contents/{WORKFLOWS_DIR}")
        except NotFoundError:
            return False
        return True
