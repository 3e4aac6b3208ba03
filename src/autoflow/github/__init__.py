"""GitHub REST API access."""

from .client import GitHubClient, RepoRef

__all__ = ["GitHubClient", "RepoRef"]
