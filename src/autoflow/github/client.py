"""Thin GitHub REST client used by the provisioning pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from ..errors import (
    AutoFlowError,
    ConflictError,
    ErrorKind,
    MalformedInputError,
    RemoteUnavailableError,
    error_for_status,
)

if TYPE_CHECKING:
    from ..config import GitHubConfig

logger = logging.getLogger(__name__)


def _is_rate_limited(response: requests.Response) -> bool:
    headers = response.headers or {}
    return headers.get("X-RateLimit-Remaining") == "0" or "Retry-After" in headers


@dataclass(frozen=True)
class RepoRef:
    """Identifies a repository as owner/name."""

    owner: str
    name: str

    @classmethod
    def parse(cls, value: str) -> "RepoRef":
        parts = value.strip().strip("/").split("/")
        if len(parts) != 2 or not all(parts):
            raise MalformedInputError(f"Repository must look like 'owner/name', got '{value}'")
        return cls(owner=parts[0], name=parts[1])

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


class GitHubClient:
    """
    GitHub REST API client.

    Every non-2xx response is converted into a typed error from
    ``autoflow.errors``; RemoteUnavailable responses (network errors, 429, 5xx)
    are retried with exponential backoff before they propagate.
    """

    def __init__(
        self,
        config: "GitHubConfig",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not config.token:
            raise MalformedInputError("A GitHub token is required (set AUTOFLOW_GITHUB_TOKEN)")

        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self.session = session or requests.Session()
        self._sleep = sleep
        self._headers = {
            "Authorization": f"Bearer {config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": config.api_version,
        }

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        stream: bool = False,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: Path relative to the API root, or a full https URL
            params: Query string parameters
            json_body: JSON request body
            stream: Return the raw streaming response instead of decoding it

        Returns:
            Decoded JSON, None for empty bodies, or the response when streaming
        """
        url = endpoint if endpoint.startswith("https://") else f"{self.base_url}{endpoint}"

        for attempt in range(self.config.max_retries + 1):
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=self._headers,
                    timeout=self.config.timeout,
                    stream=stream,
                )
            except requests.exceptions.RequestException as exc:
                error: AutoFlowError = RemoteUnavailableError(f"GitHub API unreachable: {exc}")
            else:
                if response.status_code < 400:
                    if stream:
                        return response
                    if response.status_code == 204 or not response.content:
                        return None
                    return response.json()
                error = self._error_from_response(response)
                if stream:
                    response.close()

            if error.kind is ErrorKind.REMOTE_UNAVAILABLE and attempt < self.config.max_retries:
                wait_time = self.config.backoff_seconds * (2 ** attempt)
                logger.warning(
                    "%s %s unavailable (%s). Retrying in %.1fs...", method, endpoint, error.message, wait_time
                )
                self._sleep(wait_time)
                continue
            raise error

        raise RemoteUnavailableError(f"{method} {endpoint} exhausted retries")  # pragma: no cover

    @staticmethod
    def _error_from_response(response: requests.Response) -> AutoFlowError:
        try:
            detail = response.json().get("message")
        except ValueError:
            detail = None
        message = (
            f"GitHub API Error: {response.status_code} {response.reason} - "
            f"{detail or 'Check repository permissions and token scopes.'}"
        )
        if response.status_code == 403 and _is_rate_limited(response):
            # 限流也返回 403，但可以退避重试
            return RemoteUnavailableError(f"{message} (rate limited)", response.status_code)
        return error_for_status(response.status_code, message)

    # ------------------------------------------------------------------
    # Contents API
    # ------------------------------------------------------------------

    def get_file(self, repo: RepoRef, path: str, ref: str) -> Dict[str, Any]:
        return self.request("GET", f"/repos/{repo}/contents/{quote(path)}", params={"ref": ref})

    def put_file(
        self,
        repo: RepoRef,
        path: str,
        encoded_content: str,
        message: str,
        branch: str,
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": message, "content": encoded_content, "branch": branch}
        if sha:
            body["sha"] = sha
        try:
            return self.request("PUT", f"/repos/{repo}/contents/{quote(path)}", json_body=body)
        except MalformedInputError as exc:
            # 422: sha 缺失或不匹配，说明文件在读取之后被别人改过
            if exc.status_code == 422:
                raise ConflictError(exc.message, exc.status_code) from exc
            raise

    # ------------------------------------------------------------------
    # Actions variables & secrets
    # ------------------------------------------------------------------

    def update_variable(self, repo: RepoRef, name: str, value: str) -> None:
        self.request(
            "PATCH", f"/repos/{repo}/actions/variables/{name}", json_body={"name": name, "value": value}
        )

    def create_variable(self, repo: RepoRef, name: str, value: str) -> None:
        self.request("POST", f"/repos/{repo}/actions/variables", json_body={"name": name, "value": value})

    def get_secrets_public_key(self, repo: RepoRef) -> Dict[str, str]:
        return self.request("GET", f"/repos/{repo}/actions/secrets/public-key")

    def put_secret(self, repo: RepoRef, name: str, encrypted_value: str, key_id: str) -> None:
        self.request(
            "PUT",
            f"/repos/{repo}/actions/secrets/{name}",
            json_body={"encrypted_value": encrypted_value, "key_id": key_id},
        )

    # ------------------------------------------------------------------
    # Deployments & workflow runs
    # ------------------------------------------------------------------

    def list_deployments(self, repo: RepoRef, per_page: int = 30) -> List[Dict[str, Any]]:
        return self.request("GET", f"/repos/{repo}/deployments", params={"per_page": per_page}) or []

    def list_deployment_statuses(self, statuses_url: str) -> List[Dict[str, Any]]:
        return self.request("GET", statuses_url) or []

    def list_runs(
        self, repo: RepoRef, head_sha: Optional[str] = None, per_page: int = 30
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": per_page}
        if head_sha:
            params["head_sha"] = head_sha
        payload = self.request("GET", f"/repos/{repo}/actions/runs", params=params) or {}
        return payload.get("workflow_runs", [])

    def get_run(self, repo: RepoRef, run_id: int) -> Dict[str, Any]:
        return self.request("GET", f"/repos/{repo}/actions/runs/{run_id}")

    def rerun_run(self, repo: RepoRef, run_id: int) -> None:
        self.request("POST", f"/repos/{repo}/actions/runs/{run_id}/rerun")

    def rerun_failed_jobs(self, repo: RepoRef, run_id: int) -> None:
        self.request("POST", f"/repos/{repo}/actions/runs/{run_id}/rerun-failed-jobs")

    def cancel_run(self, repo: RepoRef, run_id: int) -> None:
        self.request("POST", f"/repos/{repo}/actions/runs/{run_id}/cancel")

    def dispatch_workflow(
        self, repo: RepoRef, workflow_id: str, ref: str, inputs: Optional[Dict[str, str]] = None
    ) -> None:
        body: Dict[str, Any] = {"ref": ref}
        if inputs:
            body["inputs"] = inputs
        self.request("POST", f"/repos/{repo}/actions/workflows/{workflow_id}/dispatches", json_body=body)

    def open_run_logs(self, repo: RepoRef, run_id: int) -> requests.Response:
        """Open the zipped log archive of a run as a streaming response."""
        return self.request("GET", f"/repos/{repo}/actions/runs/{run_id}/logs", stream=True)
