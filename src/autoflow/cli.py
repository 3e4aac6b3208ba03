"""Command-line interface for AutoFlow."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import AppConfig, load_config
from .errors import AutoFlowError, MalformedInputError
from .github import GitHubClient, RepoRef
from .paths import get_run_logs_dir
from .pipeline import (
    AttemptLog,
    ConfigSecret,
    ConfigVariable,
    ProvisioningAttempt,
    ProvisioningOrchestrator,
    StepState,
    WorkflowArtifact,
)
from .utils.logging import get_logger, set_verbose

logger = get_logger(__name__)

_STATE_EMOJI = {
    StepState.PENDING: "⏳",
    StepState.IN_PROGRESS: "🔄",
    StepState.SUCCESS: "✅",
    StepState.ERROR: "❌",
}


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig

    def client(self) -> GitHubClient:
        return GitHubClient(self.config.github)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoflow",
        description="Commit a CI workflow with its variables and secrets to a GitHub repository.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # provision 子命令
    provision_parser = subparsers.add_parser(
        "provision", help="Commit a workflow file and apply its variables and secrets"
    )
    provision_parser.add_argument("repo", help="Repository as owner/name")
    provision_parser.add_argument("--workflow", required=True, help="Path to the workflow YAML file")
    provision_parser.add_argument(
        "--environment", default="Production", help="Deployment environment used in the file name"
    )
    provision_parser.add_argument("--path", default=None, help="Target path inside the repository")
    provision_parser.add_argument("--message", default=None, help="Commit message")
    provision_parser.add_argument("--branch", default=None, help="Target branch")
    provision_parser.add_argument(
        "--var", action="append", default=[], metavar="NAME=VALUE", help="Actions variable (repeatable)"
    )
    provision_parser.add_argument(
        "--secret",
        action="append",
        default=[],
        metavar="NAME",
        help="Actions secret; the value is read from the environment variable NAME (repeatable)",
    )
    provision_parser.add_argument(
        "--no-input", action="store_true", help="Do not offer to retry a failed step"
    )

    # runs 子命令
    runs_parser = subparsers.add_parser("runs", help="Inspect and control workflow runs")
    runs_sub = runs_parser.add_subparsers(dest="runs_command", required=True)
    for name, help_text in (
        ("status", "Show the status of a run"),
        ("watch", "Poll a run until it finishes"),
        ("rerun", "Rerun a failed, cancelled or timed out run"),
        ("cancel", "Cancel a queued or running run"),
        ("logs", "Download and print the logs of a run"),
    ):
        sub = runs_sub.add_parser(name, help=help_text)
        sub.add_argument("repo", help="Repository as owner/name")
        sub.add_argument("run_id", type=int, help="Workflow run id")
        if name == "logs":
            sub.add_argument(
                "--extract",
                nargs="?",
                const="",
                default=None,
                metavar="DIR",
                help="Unpack log files into DIR (default: .autoflow/logs/<run_id>)",
            )

    deployments_parser = subparsers.add_parser(
        "deployments", help="List deployments with their correlated workflow runs"
    )
    deployments_parser.add_argument("repo", help="Repository as owner/name")
    deployments_parser.add_argument(
        "--workflow-path", default=None, help="Prefer runs whose workflow path contains this text"
    )

    dispatch_parser = subparsers.add_parser("dispatch", help="Trigger a workflow_dispatch event")
    dispatch_parser.add_argument("repo", help="Repository as owner/name")
    dispatch_parser.add_argument("workflow", help="Workflow file name or id")
    dispatch_parser.add_argument("--ref", default=None, help="Branch or tag (default: configured branch)")

    exec_parser = subparsers.add_parser("exec", help="Run an allowlisted read-only vercel/railway command")
    exec_parser.add_argument("cli_command", help="Command line, e.g. 'vercel projects list'")
    exec_parser.add_argument(
        "--token", default=None, help="Platform token (default: VERCEL_TOKEN / RAILWAY_TOKEN)"
    )

    subparsers.add_parser("attempts", help="List logged provisioning attempts")

    return parser


def _parse_variables(pairs: List[str]) -> List[ConfigVariable]:
    variables = []
    for pair in pairs:
        if "=" not in pair:
            raise MalformedInputError(f"Variable must look like NAME=VALUE, got '{pair}'")
        name, value = pair.split("=", 1)
        variables.append(ConfigVariable(name=name.strip(), value=value))
    return variables


def _collect_secrets(names: List[str]) -> List[ConfigSecret]:
    secrets = []
    for name in names:
        value = os.environ.get(name, "")
        if not value:
            print(f"⚠️ Environment variable {name} is empty; secret {name} will be skipped")
        secrets.append(ConfigSecret(name=name, plaintext_value=value))
    return secrets


def print_attempt(attempt: ProvisioningAttempt) -> None:
    print(f"\n{'='*60}")
    print(f"📦 {attempt.repo}@{attempt.branch}: {attempt.artifact.path}")
    for step_id, record in attempt.steps.items():
        line = f"   {_STATE_EMOJI[record.state]} {step_id.value:<10} {record.state.value}"
        if record.last_error:
            line += f" - {record.last_error['message']}"
        print(line)
    print(f"{'='*60}\n")


def handle_provision_command(args: argparse.Namespace, context: CLIContext) -> int:
    repo = RepoRef.parse(args.repo)
    content = Path(args.workflow).read_text(encoding="utf-8")
    artifact = WorkflowArtifact.for_repository(repo.name, args.environment, content)
    if args.path or args.message:
        artifact = WorkflowArtifact(
            path=args.path or artifact.path,
            content=content,
            commit_message=args.message or artifact.commit_message,
        )

    orchestrator = ProvisioningOrchestrator.from_config(context.client(), context.config)
    attempt = orchestrator.start(
        repo,
        artifact,
        variables=_parse_variables(args.var),
        secrets=_collect_secrets(args.secret),
        branch=args.branch or context.config.pipeline.default_branch,
    )
    print_attempt(attempt)

    interactive = not args.no_input and sys.stdin.isatty()
    while not attempt.is_complete and interactive:
        failed = attempt.failed_step
        if failed is None:
            break
        choice = input(f"Retry step '{failed.value}'? [y/N] ").strip().lower()
        if choice not in ("y", "yes"):
            break
        attempt = orchestrator.retry(attempt, failed)
        print_attempt(attempt)

    return 0 if attempt.is_complete else 1


def handle_runs_command(args: argparse.Namespace, context: CLIContext) -> int:
    from .runs import DerivedStatus, RunController, download_run_logs, extract_log_archive, iter_log_lines

    client = context.client()
    repo = RepoRef.parse(args.repo)
    controller = RunController(client, poll_interval=context.config.runs.poll_interval)

    if args.runs_command == "logs":
        archive = download_run_logs(client, repo, args.run_id)
        target = None
        if args.extract is not None:
            target = Path(args.extract) if args.extract else get_run_logs_dir(args.run_id)
            target.mkdir(parents=True, exist_ok=True)
        logs = extract_log_archive(archive, target)
        for line in iter_log_lines(logs):
            print(line)
        if target:
            print(f"\n📄 {len(logs)} log files written to {target}")
        return 0

    if args.runs_command == "watch":
        final = controller.wait(repo, args.run_id)
        print(f"Run {final.run_id}: {final.derived_status.value}")
        return 0 if final.derived_status is DerivedStatus.SUCCESS else 1

    run = controller.status(repo, args.run_id)
    if args.runs_command == "status":
        print(f"Run {run.run_id}: {run.derived_status.value}")
        if run.html_url:
            print(f"🔗 {run.html_url}")
        return 0
    if args.runs_command == "rerun":
        mode = controller.rerun(repo, run)
        print(f"🔄 Rerun requested ({mode.replace('_', ' ')})")
        return 0
    if args.runs_command == "cancel":
        controller.cancel(repo, run)
        print("⏹️ Cancel requested")
        return 0
    return 1


def handle_deployments_command(args: argparse.Namespace, context: CLIContext) -> int:
    from .runs import DeploymentCorrelator

    correlator = DeploymentCorrelator(context.client())
    deployments = correlator.list_deployments(RepoRef.parse(args.repo), workflow_path=args.workflow_path)
    if not deployments:
        print("📁 No deployments found.")
        return 0

    print(f"{'ID':<12} {'Env':<12} {'State':<12} {'Duration':<10} {'Commit':<9} {'Run'}")
    print("-" * 70)
    for deployment in deployments:
        run = str(deployment.correlated_run_id) if deployment.correlated_run_id else "-"
        print(
            f"{deployment.id:<12} {(deployment.environment or '-'):<12} {deployment.state:<12} "
            f"{deployment.duration:<10} {deployment.commit_sha[:7]:<9} {run}"
        )
    return 0


def handle_dispatch_command(args: argparse.Namespace, context: CLIContext) -> int:
    from .runs import RunController

    controller = RunController(context.client())
    controller.dispatch(
        RepoRef.parse(args.repo), args.workflow, args.ref or context.config.pipeline.default_branch
    )
    return 0


def handle_exec_command(args: argparse.Namespace, context: CLIContext) -> int:
    from .commands import TOKEN_ENV, RestrictedCommandRunner, parse_command

    cli, _ = parse_command(args.cli_command)
    token = args.token or os.environ.get(TOKEN_ENV[cli], "")
    runner = RestrictedCommandRunner(bin_dir=Path(context.config.commands.bin_dir))
    result = runner.run(args.cli_command, token)
    print(result.output)
    return 1 if result.error else 0


def handle_attempts_command(context: CLIContext) -> int:
    log_dir = context.config.pipeline.log_dir
    logs = AttemptLog(Path(log_dir)).list_logs() if log_dir else []
    if not logs:
        print("📁 No provisioning attempts logged.")
        return 0

    print(f"{'#':<4} {'Status':<10} {'Repository':<30} {'Started':<20} {'File'}")
    print("-" * 100)
    for i, log_file in enumerate(logs, 1):
        data = AttemptLog.read(log_file) or {}
        started = data.get("started_at", "")[:19].replace("T", " ")
        print(f"{i:<4} {data.get('status', 'unknown'):<10} {data.get('repo', '?'):<30} {started:<20} {log_file.name}")
    return 0


def dispatch_command(args: argparse.Namespace) -> int:
    context = CLIContext(config=load_config(args.config))

    if args.command == "provision":
        return handle_provision_command(args, context)
    if args.command == "runs":
        return handle_runs_command(args, context)
    if args.command == "deployments":
        return handle_deployments_command(args, context)
    if args.command == "dispatch":
        return handle_dispatch_command(args, context)
    if args.command == "exec":
        return handle_exec_command(args, context)
    if args.command == "attempts":
        return handle_attempts_command(context)
    return 1


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    set_verbose(args.verbose)
    try:
        return dispatch_command(args)
    except AutoFlowError as exc:
        print(f"❌ {exc.message}")
        return 2
    except OSError as exc:
        # 配置文件或 workflow 文件不存在等本地错误
        print(f"❌ {exc}")
        return 2
