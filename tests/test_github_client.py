"""Tests for the GitHub REST client."""

import pytest
import requests
from conftest import FakeResponse

from autoflow.config import GitHubConfig
from autoflow.errors import (
    ConflictError,
    ErrorKind,
    MalformedInputError,
    NotAuthorizedError,
    NotFoundError,
    RemoteUnavailableError,
)
from autoflow.github import GitHubClient, RepoRef


class TestRepoRef:
    def test_parse(self):
        ref = RepoRef.parse("octo/app")
        assert ref.owner == "octo"
        assert ref.name == "app"
        assert str(ref) == "octo/app"

    @pytest.mark.parametrize("value", ["octo", "octo/app/extra", "/app", ""])
    def test_parse_rejects_bad_values(self, value):
        with pytest.raises(MalformedInputError):
            RepoRef.parse(value)


class TestGitHubClient:
    def test_requires_token(self):
        with pytest.raises(MalformedInputError):
            GitHubClient(GitHubConfig(token=None))

    def test_sends_auth_and_version_headers(self, client, fake_github, repo):
        client.get_secrets_public_key(repo)
        headers = fake_github.headers_seen[-1]
        assert headers["Authorization"] == "Bearer test-token"
        assert headers["X-GitHub-Api-Version"] == "2022-11-28"

    def test_not_found_is_typed_and_not_retried(self, client, fake_github, repo, sleeps):
        with pytest.raises(NotFoundError) as info:
            client.get_file(repo, "missing.yml", ref="main")
        assert info.value.kind is ErrorKind.NOT_FOUND
        assert info.value.status_code == 404
        assert fake_github.count("GET", r"/contents/missing.yml") == 1
        assert sleeps == []

    def test_server_error_is_retried_with_backoff(self, client, fake_github, repo, sleeps):
        fake_github.inject("GET", r"/public-key$", 503)
        fake_github.inject("GET", r"/public-key$", 502)

        key = client.get_secrets_public_key(repo)

        assert key["key_id"] == "key-1"
        assert fake_github.count("GET", r"/public-key$") == 3
        assert sleeps == [0.5, 1.0]

    def test_connection_error_exhausts_retries(self, client, fake_github, repo, sleeps):
        for _ in range(3):
            fake_github.inject("GET", r"/public-key$", requests.exceptions.ConnectionError("boom"))

        with pytest.raises(RemoteUnavailableError) as info:
            client.get_secrets_public_key(repo)
        assert info.value.retryable
        assert len(sleeps) == 2

    def test_forbidden_is_terminal(self, client, fake_github, repo, sleeps):
        fake_github.inject("PATCH", r"/actions/variables/", 403)
        with pytest.raises(NotAuthorizedError) as info:
            client.update_variable(repo, "NODE_VERSION", "20")
        assert not info.value.retryable
        assert sleeps == []
        assert "403" in info.value.message

    @pytest.mark.parametrize(
        "headers",
        [{"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"}, {"Retry-After": "30"}],
    )
    def test_rate_limited_forbidden_is_retried(self, client, fake_github, repo, sleeps, headers):
        limited = FakeResponse(403, {"message": "API rate limit exceeded"}, headers=headers)
        fake_github.inject("GET", r"/public-key$", limited)

        key = client.get_secrets_public_key(repo)

        assert key["key_id"] == "key-1"
        assert sleeps == [0.5]

    def test_rate_limit_exhausts_as_remote_unavailable(self, client, fake_github, repo, sleeps):
        for _ in range(3):
            limited = FakeResponse(403, {"message": "secondary rate limit"}, headers={"Retry-After": "1"})
            fake_github.inject("GET", r"/public-key$", limited)

        with pytest.raises(RemoteUnavailableError) as info:
            client.get_secrets_public_key(repo)
        assert info.value.status_code == 403
        assert len(sleeps) == 2

    def test_put_file_unprocessable_becomes_conflict(self, client, fake_github, repo):
        fake_github.put_remote_file("octo/app", "ci.yml", "main", "old")
        with pytest.raises(ConflictError) as info:
            client.put_file(repo, "ci.yml", "bmV3", message="update", branch="main")
        assert info.value.status_code == 422

    def test_empty_body_returns_none(self, client, repo):
        assert client.dispatch_workflow(repo, "ci.yml", "main") is None

    def test_list_runs_filters_by_head_sha(self, client, fake_github, repo):
        fake_github.runs = [
            {"id": 1, "head_sha": "aaa", "status": "queued", "conclusion": None},
            {"id": 2, "head_sha": "bbb", "status": "queued", "conclusion": None},
        ]
        runs = client.list_runs(repo, head_sha="bbb")
        assert [run["id"] for run in runs] == [2]
