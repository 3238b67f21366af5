"""Tests for the CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import pytest
from ktlint_review import cli
from ktlint_review.github_client import (
    GitHubAuthError,
    PublishResult,
    PullRequestFile,
    PullRequestMeta,
)
from typer.testing import CliRunner

runner = CliRunner()


@dataclass
class _DummyClientContext:
    """Simple context manager to stand in for an HTTP client."""

    def __enter__(self) -> _DummyClientContext:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        return None


def make_metadata() -> PullRequestMeta:
    return PullRequestMeta(
        number=42,
        title="Title",
        state="open",
        html_url="https://github.com/acme/rocket/pull/42",
        base_sha="base-sha",
        head_sha="head-sha",
    )


def make_files() -> tuple[PullRequestFile, ...]:
    return (
        PullRequestFile(
            path="app/A.kt",
            status="modified",
            patch="@@ -1,1 +1,1 @@\n-old\n+new",
        ),
    )


def write_report(path: Path, payload: object) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.mark.unit
def test_auth_check_fails_when_token_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    def _raise_missing_token() -> tuple[str, str]:
        raise GitHubAuthError("Missing token.")

    monkeypatch.setattr(cli, "get_github_token_with_source", _raise_missing_token)
    result = runner.invoke(cli.app, ["auth-check"])

    assert result.exit_code == 1
    assert "GitHub auth check failed" in result.output


@pytest.mark.unit
def test_auth_check_succeeds_with_repo_and_pr(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "get_github_token_with_source", lambda: ("token", "GITHUB_TOKEN"))
    monkeypatch.setattr(
        cli,
        "build_github_client",
        lambda timeout_seconds=20, trust_env=True: _DummyClientContext(),
    )
    monkeypatch.setattr(cli, "fetch_authenticated_user_login", lambda client: "octocat")
    monkeypatch.setattr(
        cli,
        "fetch_pull_request_metadata",
        lambda client, repo_full_name, pr_number: make_metadata(),
    )
    monkeypatch.setattr(
        cli,
        "fetch_pull_request_files",
        lambda client, repo_full_name, pr_number: make_files(),
    )

    result = runner.invoke(cli.app, ["auth-check", "--repo", "acme/rocket", "--pr", "42"])

    assert result.exit_code == 0
    assert "Token detected in GITHUB_TOKEN." in result.output
    assert "Authenticated as GitHub user 'octocat'." in result.output
    assert "Repository/PR access check passed for acme/rocket#42." in result.output
    assert "GitHub token setup is valid." in result.output


@pytest.mark.unit
def test_lint_dry_run_prints_inline_actions(clean_env: Path) -> None:
    report = write_report(
        clean_env / "report.json",
        [{"file": "A.kt", "errors": [{"line": 1, "message": "m1"}]}],
    )

    result = runner.invoke(
        cli.app,
        ["lint", "--dry-run", "--skip-gradle-task", "--inline", "--report-file", str(report)],
    )

    assert result.exit_code == 0
    assert "[warn] A.kt:1: m1" in result.output
    assert "Reported 1 inline action(s) for 1 finding(s)." in result.output


@pytest.mark.unit
def test_lint_dry_run_exits_non_zero_for_failures(clean_env: Path) -> None:
    report = write_report(
        clean_env / "report.json",
        [{"file": "A.kt", "errors": [{"line": 1, "message": "m1"}]}],
    )

    result = runner.invoke(
        cli.app,
        [
            "lint",
            "--dry-run",
            "--skip-gradle-task",
            "--treat-errors-as-failures",
            "--report-file",
            str(report),
        ],
    )

    assert result.exit_code == 1
    assert "[fail] A.kt#L1: m1" in result.output


@pytest.mark.unit
def test_lint_dry_run_with_missing_reports_succeeds(clean_env: Path) -> None:
    result = runner.invoke(
        cli.app,
        ["lint", "--dry-run", "--skip-gradle-task", "--report-file", "missing.json"],
    )

    assert result.exit_code == 0
    assert "Skipping ktlint reporting because no report files available" in result.output


@pytest.mark.unit
def test_lint_reports_malformed_report(clean_env: Path) -> None:
    report = write_report(clean_env / "bad.json", [{"file": "A.kt", "errors": [{"message": "x"}]}])

    result = runner.invoke(
        cli.app,
        ["lint", "--dry-run", "--skip-gradle-task", "--report-file", str(report)],
    )

    assert result.exit_code == 1
    assert "malformed report" in result.output


@pytest.mark.unit
def test_lint_requires_repo_and_pr_without_dry_run(clean_env: Path) -> None:
    result = runner.invoke(cli.app, ["lint", "--skip-gradle-task"])

    assert result.exit_code != 0


@pytest.mark.unit
def test_lint_publishes_to_pull_request(
    monkeypatch: pytest.MonkeyPatch, clean_env: Path
) -> None:
    report = write_report(
        clean_env / "report.json",
        [{"file": "app/A.kt", "errors": [{"line": 1, "message": "m1"}]}],
    )
    published: dict[str, object] = {}

    class FakeSink:
        def __init__(self, **kwargs: object) -> None:
            published["repo"] = kwargs["repo_full_name"]
            self.warnings: list[tuple[str, str | None, int | None]] = []

        def warn(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
            self.warnings.append((message, file, line))

        def fail(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
            raise AssertionError("no failures expected")

        def publish(self, *, notices=()) -> PublishResult:  # type: ignore[no-untyped-def]
            published["warnings"] = list(self.warnings)
            return PublishResult(review_id=901, inline_comment_count=1)

    monkeypatch.setattr(
        cli,
        "build_github_client",
        lambda timeout_seconds=20: _DummyClientContext(),
    )
    monkeypatch.setattr(
        cli,
        "fetch_pull_request_metadata",
        lambda client, repo_full_name, pr_number: make_metadata(),
    )
    monkeypatch.setattr(
        cli,
        "fetch_pull_request_files",
        lambda client, repo_full_name, pr_number: make_files(),
    )
    monkeypatch.setattr(cli, "GitHubReviewSink", FakeSink)

    result = runner.invoke(
        cli.app,
        [
            "lint",
            "--repo",
            "acme/rocket",
            "--pr",
            "42",
            "--inline",
            "--skip-gradle-task",
            "--report-file",
            str(report),
        ],
    )

    assert result.exit_code == 0
    assert published == {"repo": "acme/rocket", "warnings": [("m1", "app/A.kt", 1)]}
    assert "[warn] app/A.kt:1: m1" in result.output


@pytest.mark.unit
def test_lint_warnings_flag_overrides_environment(
    monkeypatch: pytest.MonkeyPatch, clean_env: Path
) -> None:
    monkeypatch.setenv("KTLINT_TREAT_ERRORS_AS_WARNINGS", "false")
    report = write_report(
        clean_env / "report.json",
        [{"file": "A.kt", "errors": [{"line": 1, "message": "m1"}]}],
    )

    result = runner.invoke(
        cli.app,
        [
            "lint",
            "--dry-run",
            "--skip-gradle-task",
            "--treat-errors-as-warnings",
            "--report-file",
            str(report),
        ],
    )

    assert result.exit_code == 0
    assert "[warn] A.kt#L1: m1" in result.output


@pytest.mark.unit
def test_lint_environment_severity_applies_without_flag(
    monkeypatch: pytest.MonkeyPatch, clean_env: Path
) -> None:
    monkeypatch.setenv("KTLINT_TREAT_ERRORS_AS_WARNINGS", "false")
    report = write_report(
        clean_env / "report.json",
        [{"file": "A.kt", "errors": [{"line": 1, "message": "m1"}]}],
    )

    result = runner.invoke(
        cli.app,
        ["lint", "--dry-run", "--skip-gradle-task", "--report-file", str(report)],
    )

    assert result.exit_code == 1
    assert "[fail] A.kt#L1: m1" in result.output


@pytest.mark.unit
def test_lint_rejects_both_severity_flags(clean_env: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "lint",
            "--dry-run",
            "--skip-gradle-task",
            "--treat-errors-as-warnings",
            "--treat-errors-as-failures",
        ],
    )

    assert result.exit_code == 2
