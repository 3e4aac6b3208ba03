"""Shared fixtures: an in-memory stand-in for the GitHub REST API."""

import base64
import hashlib
import io
import json
import re
import threading
import zipfile
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

import pytest
from nacl import encoding, public

from autoflow.config import GitHubConfig
from autoflow.github import GitHubClient, RepoRef


class FakeResponse:
    def __init__(
        self,
        status_code: int,
        payload: Any = None,
        content: Optional[bytes] = None,
        reason: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.reason = reason or {200: "OK", 201: "Created", 204: "No Content", 404: "Not Found"}.get(status_code, "")
        if content is not None:
            self.content = content
        elif payload is not None:
            self.content = json.dumps(payload).encode("utf-8")
        else:
            self.content = b""
        self.closed = False
        self.chunks_served = 0

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.content), chunk_size):
            if self.closed:
                return
            self.chunks_served += 1
            yield self.content[start:start + chunk_size]

    def close(self) -> None:
        self.closed = True


def _blob_sha(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


class FakeGitHub:
    """Implements the slice of the GitHub API used by autoflow, keyed by request path."""

    def __init__(self) -> None:
        self.private_key = public.PrivateKey.generate()
        self.key_id = "key-1"
        self.files: Dict[Tuple[str, str, str], Dict[str, str]] = {}
        self.variables: Dict[str, str] = {}
        self.secrets: Dict[str, Dict[str, str]] = {}
        self.runs: List[Dict[str, Any]] = []
        self.deployments: List[Dict[str, Any]] = []
        self.deployment_statuses: Dict[int, List[Dict[str, Any]]] = {}
        self.log_archive: bytes = b""
        self.calls: List[Tuple[str, str, Any]] = []
        self.headers_seen: List[Dict[str, str]] = []
        self.injected: List[Tuple[str, str, Any]] = []
        self.before_put: Optional[Callable[[], None]] = None
        self.last_response: Optional[FakeResponse] = None
        self._lock = threading.Lock()

    # -- helpers for tests ------------------------------------------------

    @property
    def public_key_b64(self) -> str:
        return self.private_key.public_key.encode(encoding.Base64Encoder).decode("ascii")

    def open_secret(self, name: str) -> str:
        sealed = base64.b64decode(self.secrets[name]["encrypted_value"])
        return public.SealedBox(self.private_key).decrypt(sealed).decode("utf-8")

    def put_remote_file(self, repo: str, path: str, branch: str, content: str) -> str:
        sha = _blob_sha(content)
        self.files[(repo, path, branch)] = {"content": content, "sha": sha}
        return sha

    def inject(self, method: str, path_pattern: str, outcome: Any) -> None:
        """Make the next matching request fail with a status code or a prepared response, or raise an exception."""
        self.injected.append((method, path_pattern, outcome))

    def count(self, method: str, path_pattern: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and re.search(path_pattern, p))

    # -- requests.Session interface ---------------------------------------

    def request(self, method, url, params=None, json=None, headers=None, timeout=None, stream=False):
        with self._lock:
            return self._handle(method, url, params, json, headers)

    def _handle(self, method, url, params, json, headers):
        path = unquote(urlsplit(url).path)
        self.calls.append((method, path, json))
        self.headers_seen.append(dict(headers or {}))

        for index, (m, pattern, outcome) in enumerate(self.injected):
            if m == method and re.search(pattern, path):
                del self.injected[index]
                if isinstance(outcome, BaseException):
                    raise outcome
                if isinstance(outcome, FakeResponse):
                    return outcome
                return FakeResponse(outcome, {"message": f"injected {outcome}"})

        response = self._route(method, path, params or {}, json)
        self.last_response = response
        return response

    def _route(self, method: str, path: str, params: Dict[str, Any], body: Any) -> FakeResponse:
        m = re.match(r"^/repos/([^/]+/[^/]+)/contents/(.+)$", path)
        if m:
            return self._contents(method, m.group(1), m.group(2), params, body)

        m = re.match(r"^/repos/[^/]+/[^/]+/actions/variables(?:/([^/]+))?$", path)
        if m:
            return self._variables(method, m.group(1), body)

        if re.match(r"^/repos/[^/]+/[^/]+/actions/secrets/public-key$", path):
            return FakeResponse(200, {"key_id": self.key_id, "key": self.public_key_b64})

        m = re.match(r"^/repos/[^/]+/[^/]+/actions/secrets/([^/]+)$", path)
        if m and method == "PUT":
            created = m.group(1) not in self.secrets
            self.secrets[m.group(1)] = dict(body)
            return FakeResponse(201 if created else 204)

        m = re.match(r"^/repos/[^/]+/[^/]+/actions/runs(?:/(\d+))?(?:/(rerun|rerun-failed-jobs|cancel|logs))?$", path)
        if m:
            return self._runs(method, m.group(1), m.group(2), params)

        if re.match(r"^/repos/[^/]+/[^/]+/actions/workflows/[^/]+/dispatches$", path):
            return FakeResponse(204)

        m = re.match(r"^/repos/[^/]+/[^/]+/deployments(?:/(\d+)/statuses)?$", path)
        if m:
            if m.group(1):
                return FakeResponse(200, self.deployment_statuses.get(int(m.group(1)), []))
            return FakeResponse(200, self.deployments)

        return FakeResponse(404, {"message": "Not Found"})

    def _contents(self, method, repo, path, params, body) -> FakeResponse:
        if method == "GET":
            prefix = path.rstrip("/") + "/"
            entries = [key for key in self.files if key[0] == repo and key[1].startswith(prefix)]
            key = (repo, path, params.get("ref", "main"))
            if key in self.files:
                stored = self.files[key]
                encoded = base64.b64encode(stored["content"].encode("utf-8")).decode("ascii")
                # the real API wraps base64 at 60 chars
                wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))
                return FakeResponse(200, {"sha": stored["sha"], "content": wrapped, "encoding": "base64"})
            if entries:
                return FakeResponse(200, [{"path": key[1]} for key in entries])
            return FakeResponse(404, {"message": "Not Found"})

        if method == "PUT":
            if self.before_put:
                hook, self.before_put = self.before_put, None
                hook()
            key = (repo, path, body["branch"])
            existing = self.files.get(key)
            if existing and not body.get("sha"):
                return FakeResponse(422, {"message": "\"sha\" wasn't supplied."})
            if existing and body["sha"] != existing["sha"]:
                return FakeResponse(409, {"message": f"{path} does not match {body['sha']}"})
            content = base64.b64decode(body["content"]).decode("utf-8")
            sha = self.put_remote_file(repo, path, body["branch"], content)
            return FakeResponse(200 if existing else 201, {"content": {"path": path, "sha": sha}})

        return FakeResponse(405, {"message": "Method Not Allowed"})

    def _variables(self, method, name, body) -> FakeResponse:
        if method == "PATCH":
            if name not in self.variables:
                return FakeResponse(404, {"message": "Not Found"})
            self.variables[name] = body["value"]
            return FakeResponse(204)
        if method == "POST":
            if body["name"] in self.variables:
                return FakeResponse(409, {"message": "Already exists"})
            self.variables[body["name"]] = body["value"]
            return FakeResponse(201)
        return FakeResponse(405, {"message": "Method Not Allowed"})

    def _runs(self, method, run_id, action, params) -> FakeResponse:
        if run_id is None:
            runs = self.runs
            if params.get("head_sha"):
                runs = [run for run in runs if run["head_sha"] == params["head_sha"]]
            return FakeResponse(200, {"total_count": len(runs), "workflow_runs": runs})
        run = next((r for r in self.runs if r["id"] == int(run_id)), None)
        if run is None:
            return FakeResponse(404, {"message": "Not Found"})
        if action == "logs":
            return FakeResponse(200, content=self.log_archive)
        if action in ("rerun", "rerun-failed-jobs"):
            return FakeResponse(201)
        if action == "cancel":
            return FakeResponse(202, {})
        return FakeResponse(200, run)


def make_log_archive(files: Dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        for name, text in files.items():
            bundle.writestr(name, text)
    return buffer.getvalue()


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def client(fake_github: FakeGitHub, sleeps: List[float]) -> GitHubClient:
    config = GitHubConfig(token="test-token", max_retries=2, backoff_seconds=0.5)
    return GitHubClient(config, session=fake_github, sleep=sleeps.append)


@pytest.fixture
def repo() -> RepoRef:
    return RepoRef("octo", "app")
