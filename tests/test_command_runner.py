"""Tests for the restricted command surface."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from autoflow.commands import RestrictedCommandRunner, parse_command
from autoflow.errors import CommandRejectedError, ErrorKind, MalformedInputError


@pytest.fixture
def runner():
    return RestrictedCommandRunner(bin_dir=Path("/opt/bin"), base_env={"PATH": "/usr/bin"})


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.mark.parametrize(
    "command",
    ["vercel projects list", "vercel domains ls", "vercel logs my-app.vercel.app", "vercel deployments ls --prod",
     "railway projects", "railway services", "railway logs", "railway status --json"],
)
def test_allowed_commands_parse(command):
    cli, args = parse_command(command)
    assert cli == command.split()[0]
    assert args == command.split()[1:]


@pytest.mark.parametrize(
    "command",
    ["vercel remove my-app", "vercel projects rm app", "vercel env pull", "railway up", "railway variables set A=1",
     "rm -rf /", "bash -c 'vercel logs'", "vercel"],
)
def test_rejected_before_any_process_starts(runner, command):
    with patch("autoflow.commands.runner.subprocess.run") as run:
        with pytest.raises(CommandRejectedError) as excinfo:
            runner.run(command, "tok")
    run.assert_not_called()
    assert excinfo.value.kind is ErrorKind.NOT_AUTHORIZED
    assert command in str(excinfo.value)


@pytest.mark.parametrize("command", ["", "   "])
def test_empty_command_is_malformed(runner, command):
    with pytest.raises(MalformedInputError):
        runner.run(command, "tok")


def test_missing_token_is_malformed(runner):
    with patch("autoflow.commands.runner.subprocess.run") as run:
        with pytest.raises(MalformedInputError):
            runner.run("vercel projects list", "  ")
    run.assert_not_called()


def test_token_is_passed_through_environment(runner):
    with patch("autoflow.commands.runner.subprocess.run", return_value=_completed(stdout="my-app\n")) as run:
        result = runner.run("railway status", "rw-token")

    assert result.output == "my-app\n"
    assert result.error is False
    argv = run.call_args[0][0]
    env = run.call_args[1]["env"]
    assert argv == [str(Path("/opt/bin/railway").resolve()), "status"]
    assert env["RAILWAY_TOKEN"] == "rw-token"
    assert env["PATH"] == "/usr/bin"
    assert "rw-token" not in argv


def test_non_zero_exit_returns_error_output(runner):
    with patch("autoflow.commands.runner.subprocess.run", return_value=_completed(2, stderr="Error: not linked\n")):
        result = runner.run("vercel domains ls", "tok")

    assert result.error is True
    assert result.exit_code == 2
    assert result.output == "Error: not linked"


def test_non_zero_exit_without_stderr(runner):
    with patch("autoflow.commands.runner.subprocess.run", return_value=_completed(1)):
        result = runner.run("vercel domains ls", "tok")
    assert result.output == "Command exited with code 1"


def test_missing_binary_returns_error_result(tmp_path):
    runner = RestrictedCommandRunner(bin_dir=tmp_path, base_env={"PATH": ""})

    result = runner.run("vercel projects list", "tok")

    assert result.error is True
    assert result.exit_code == -1
    assert result.output.startswith("Server error executing command:")


def test_timeout_returns_error_result(runner):
    timeout = subprocess.TimeoutExpired(cmd=["vercel"], timeout=1)
    with patch("autoflow.commands.runner.subprocess.run", side_effect=timeout):
        result = runner.run("vercel logs app.vercel.app", "tok", timeout=1)

    assert result.error is True
    assert result.output == "Command timed out after 1s"
