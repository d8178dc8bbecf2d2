# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Tests for the command-line interface."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from preview_deployer.cleanup import CleanupResult
from preview_deployer.cli import main
from preview_deployer.outcomes import (
    DeploymentFailure,
    DeploymentSuccess,
    FailureKind,
    PreviewEnvironment,
    read_results,
    write_results,
)

SUCCESS = DeploymentSuccess(
    service="utilities/excalidraw",
    domain="swift-otter.example.com",
    url="https://swift-otter.example.com",
    domain_id="dom-1",
    service_name="excalidraw",
    port=8080,
)
FAILURE = DeploymentFailure("media/jellyfin", FailureKind.NO_SERVICE_FOUND, "none")


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run each command in an empty directory and drop handlers it installs."""
    monkeypatch.chdir(tmp_path)
    for name in ("PR_NUMBER", "PR_BRANCH", "GITHUB_TOKEN", "GITHUB_REPOSITORY"):
        monkeypatch.delenv(name, raising=False)
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    yield
    root_logger.handlers = handlers


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@patch("preview_deployer.cli.detect_services", return_value=["a/one", "b/two"])
def test_detect_prints_services(mock_detect: MagicMock, runner: CliRunner) -> None:
    """detect prints one changed service per line."""
    result = runner.invoke(main, ["detect", "--base", "abc123"])

    assert result.exit_code == 0
    assert result.output.splitlines() == ["a/one", "b/two"]
    assert mock_detect.call_args[0][:2] == ("abc123", "HEAD")


@patch("preview_deployer.cli.detect_services", return_value=["a/one"])
def test_detect_json(mock_detect: MagicMock, runner: CliRunner) -> None:
    """detect --json prints the services as a JSON array."""
    result = runner.invoke(main, ["detect", "--json"])

    assert result.exit_code == 0
    assert json.loads(result.output) == ["a/one"]


@patch("preview_deployer.cli.detect_services", side_effect=RuntimeError("bad revision"))
def test_detect_git_failure_exits_1(mock_detect: MagicMock, runner: CliRunner) -> None:
    """A git failure during detect should exit with status 1."""
    result = runner.invoke(main, ["detect"])

    assert result.exit_code == 1
    assert "Runtime error: bad revision" in result.output


@patch("preview_deployer.cli.check_kubectl_available", return_value=True)
@patch("preview_deployer.cli.run_previews")
def test_deploy_explicit_services_writes_results(
    mock_run: MagicMock, mock_kubectl: MagicMock, runner: CliRunner, tmp_path: Path
) -> None:
    """deploy with explicit services runs them and writes the results file."""
    mock_run.return_value = [SUCCESS]

    result = runner.invoke(
        main, ["deploy", "--pr", "42", "--branch", "feat", "utilities/excalidraw"]
    )

    assert result.exit_code == 0, result.output
    services, pr_number, branch = mock_run.call_args[0][:3]
    assert services == ["utilities/excalidraw"]
    assert pr_number == "42"
    assert branch == "feat"
    assert read_results(tmp_path / "preview-results.txt") == [SUCCESS]


@patch("preview_deployer.cli.check_kubectl_available")
@patch("preview_deployer.cli.detect_services", return_value=[])
def test_deploy_without_changes_skips_kubectl(
    mock_detect: MagicMock, mock_kubectl: MagicMock, runner: CliRunner, tmp_path: Path
) -> None:
    """deploy with nothing changed should not require kubectl."""
    result = runner.invoke(main, ["deploy"], env={"PR_NUMBER": "42"})

    assert result.exit_code == 0, result.output
    mock_kubectl.assert_not_called()
    assert read_results(tmp_path / "preview-results.txt") == []


@patch("preview_deployer.cli.check_kubectl_available", return_value=False)
def test_deploy_requires_kubectl(mock_kubectl: MagicMock, runner: CliRunner) -> None:
    """deploy should exit 1 when kubectl is not available."""
    result = runner.invoke(main, ["deploy", "--pr", "42", "a/one"])

    assert result.exit_code == 1
    assert "kubectl is not installed" in result.output


def test_deploy_requires_pr_number(runner: CliRunner) -> None:
    """deploy without --pr or PR_NUMBER is a usage error."""
    result = runner.invoke(main, ["deploy", "a/one"])

    assert result.exit_code == 2
    assert "--pr" in result.output


@patch("preview_deployer.cli.check_kubectl_available", return_value=True)
@patch("preview_deployer.cli.run_previews", return_value=[SUCCESS, FAILURE])
def test_deploy_fail_on_error(
    mock_run: MagicMock, mock_kubectl: MagicMock, runner: CliRunner
) -> None:
    """Failed services only change the exit status with --fail-on-error."""
    args = ["deploy", "--pr", "42", "a/one", "b/two"]

    assert runner.invoke(main, args).exit_code == 0
    assert runner.invoke(main, args + ["--fail-on-error"]).exit_code == 1


def test_report_without_results_says_not_run(runner: CliRunner) -> None:
    """report without a results file says the pipeline did not run."""
    result = runner.invoke(main, ["report", "--pr", "42"])

    assert result.exit_code == 0
    assert "did not run" in result.output


def test_report_to_file(runner: CliRunner, tmp_path: Path) -> None:
    """report --output writes the Markdown to a file."""
    write_results(tmp_path / "preview-results.txt", [SUCCESS, FAILURE])

    result = runner.invoke(main, ["report", "--pr", "42", "-o", "report.md"])

    assert result.exit_code == 0
    body = (tmp_path / "report.md").read_text()
    assert "Some previews failed." in body
    assert "NO_SERVICE_FOUND" in body


def test_report_malformed_results_exits_1(runner: CliRunner, tmp_path: Path) -> None:
    """A malformed results file should exit with status 1."""
    (tmp_path / "preview-results.txt").write_text("only|two\n")

    result = runner.invoke(main, ["report", "--pr", "42"])

    assert result.exit_code == 1
    assert "Malformed results record" in result.output


@patch("preview_deployer.cli.post_comment")
def test_comment_dry_run_does_not_post(mock_post: MagicMock, runner: CliRunner) -> None:
    """comment --dry-run prints the report instead of posting it."""
    result = runner.invoke(main, ["comment", "--pr", "42", "--dry-run"])

    assert result.exit_code == 0
    assert "## Preview environments for PR #42" in result.output
    mock_post.assert_not_called()


@patch("preview_deployer.cli.post_comment", return_value="https://github.com/o/r/pull/42#c")
def test_comment_posts_report(
    mock_post: MagicMock, runner: CliRunner, tmp_path: Path
) -> None:
    """comment posts the rendered report to the pull request."""
    write_results(tmp_path / "preview-results.txt", [SUCCESS])

    result = runner.invoke(
        main,
        ["comment", "--pr", "42"],
        env={"GITHUB_REPOSITORY": "o/r", "GITHUB_TOKEN": "tkn"},
    )

    assert result.exit_code == 0, result.output
    repository, pr_number, body, token = mock_post.call_args[0]
    assert (repository, pr_number, token) == ("o/r", "42", "tkn")
    assert "All previews deployed." in body


def test_comment_without_token_exits_1(runner: CliRunner) -> None:
    """comment without GITHUB_TOKEN should exit with status 1."""
    result = runner.invoke(main, ["comment", "--pr", "42", "--repository", "o/r"])

    assert result.exit_code == 1
    assert "GitHub token" in result.output


@patch("preview_deployer.cli.check_kubectl_available", return_value=True)
@patch("preview_deployer.cli.cleanup_previews")
def test_cleanup_failure_exits_1(
    mock_cleanup: MagicMock, mock_kubectl: MagicMock, runner: CliRunner
) -> None:
    """cleanup should exit 1 and name namespaces that could not be deleted."""
    mock_cleanup.return_value = CleanupResult(failed=["preview-pr-42-a-one"])

    result = runner.invoke(main, ["cleanup", "--pr", "42"])

    assert result.exit_code == 1
    assert "preview-pr-42-a-one" in result.output


@patch("preview_deployer.cli.check_kubectl_available", return_value=True)
@patch("preview_deployer.cli.cleanup_previews", return_value=CleanupResult())
def test_cleanup_success(
    mock_cleanup: MagicMock, mock_kubectl: MagicMock, runner: CliRunner
) -> None:
    """cleanup exits 0 when every namespace was deleted."""
    result = runner.invoke(main, ["cleanup", "--pr", "42"])

    assert result.exit_code == 0
    assert mock_cleanup.call_args[0][0] == "42"


@patch("preview_deployer.cli.check_kubectl_available", return_value=True)
@patch("preview_deployer.cli.find_previews")
def test_status_lists_environments(
    mock_find: MagicMock, mock_kubectl: MagicMock, runner: CliRunner
) -> None:
    """status prints each preview namespace with its domain id."""
    mock_find.return_value = [
        PreviewEnvironment(
            namespace="preview-pr-42-a-one",
            pr_number="42",
            service="a-one",
            created_at="2026-10-01T12:00:00Z",
            domain_id="dom-1",
        )
    ]

    result = runner.invoke(main, ["status", "--pr", "42"])

    assert result.exit_code == 0
    assert "preview-pr-42-a-one" in result.output
    assert "domain=dom-1" in result.output


@patch("preview_deployer.cli.check_kubectl_available", return_value=True)
@patch("preview_deployer.cli.find_previews", return_value=[])
@patch("preview_deployer.cli.cleanup_previews", return_value=CleanupResult())
def test_cleanup_and_status_select_by_configured_creator(
    mock_cleanup: MagicMock,
    mock_find: MagicMock,
    mock_kubectl: MagicMock,
    runner: CliRunner,
    tmp_path: Path,
) -> None:
    """cleanup and status should only look at namespaces carrying the configured created-by."""
    (tmp_path / "preview.toml").write_text('[preview]\ncreated_by = "ci-bot"\n')

    assert runner.invoke(main, ["cleanup", "--pr", "42"]).exit_code == 0
    assert runner.invoke(main, ["status", "--pr", "42"]).exit_code == 0

    assert mock_cleanup.call_args[0][2] == "ci-bot"
    mock_find.assert_called_once_with("42", "ci-bot")


def test_invalid_config_exits_1(runner: CliRunner, tmp_path: Path) -> None:
    """An invalid configuration value should exit with status 1."""
    (tmp_path / "preview.toml").write_text("[preview]\nreadiness_attempts = 0\n")

    result = runner.invoke(main, ["report", "--pr", "42"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_missing_config_file_exits_1(runner: CliRunner) -> None:
    """An explicit --config that does not exist should exit with status 1."""
    result = runner.invoke(main, ["--config", "nope.toml", "report", "--pr", "42"])

    assert result.exit_code == 1
    assert "Configuration file not found" in result.output
