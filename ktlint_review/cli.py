"""Typer CLI for posting ktlint findings to GitHub pull requests."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import httpx
import typer

from ktlint_review.build_runner import GradleBuildRunner
from ktlint_review.config import ConfigError, load_config
from ktlint_review.github_client import (
    GitHubApiError,
    GitHubAuthError,
    GitHubInputError,
    GitHubLinkFormatter,
    GitHubReviewSink,
    PullRequestChangedFiles,
    build_github_client,
    fetch_authenticated_user_login,
    fetch_pull_request_files,
    fetch_pull_request_metadata,
    get_github_token_with_source,
)
from ktlint_review.loader import MalformedReport
from ktlint_review.output import CollectingSink, render_text_report
from ktlint_review.plugin import LintOutcome, lint
from ktlint_review.renderer import UnsupportedMode
from ktlint_review.schema import RenderMode

app = typer.Typer(help="Run ktlint and report its findings on GitHub pull requests.")


def configure_logging(verbose: bool) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        force=True,
    )


def _echo_outcome(outcome: LintOutcome) -> None:
    for notice in outcome.notices:
        typer.echo(notice)
    typer.echo(
        f"Reported {len(outcome.actions)} {outcome.mode.value} action(s) "
        f"for {len(outcome.findings)} finding(s)."
    )


def _require_pull_request(repo: str | None, pr: int | None) -> tuple[str, int]:
    if repo is None or pr is None:
        raise typer.BadParameter("Provide --repo and --pr, or use --dry-run.")
    return repo, pr


@app.command("lint")
def lint_command(
    repo: Annotated[
        str | None, typer.Option(help="Repository in owner/repo format.")
    ] = None,
    pr: Annotated[int | None, typer.Option(help="Pull request number.")] = None,
    inline: Annotated[
        bool,
        typer.Option(
            "--inline/--no-inline",
            help="Post line-anchored review annotations instead of one summary comment.",
        ),
    ] = False,
    report_file: Annotated[
        str | None,
        typer.Option(help="Comma-separated ktlint JSON report paths."),
    ] = None,
    gradle_task: Annotated[
        str | None, typer.Option(help="Gradle task producing the reports.")
    ] = None,
    skip_gradle_task: Annotated[
        bool, typer.Option(help="Skip running gradle when reports already exist.")
    ] = False,
    staged_only: Annotated[
        bool, typer.Option(help="Lint only Kotlin files changed in the pull request.")
    ] = False,
    treat_errors_as_warnings: Annotated[
        bool,
        typer.Option(
            "--treat-errors-as-warnings",
            help="Report findings as non-blocking warnings, overriding the environment.",
        ),
    ] = False,
    treat_errors_as_failures: Annotated[
        bool,
        typer.Option(
            "--treat-errors-as-failures",
            help="Report findings as blocking failures instead of warnings.",
        ),
    ] = False,
    project_dir: Annotated[
        Path, typer.Option(help="Directory containing the gradle wrapper.")
    ] = Path("."),
    dry_run: Annotated[bool, typer.Option(help="Print actions instead of posting.")] = False,
    timeout_seconds: Annotated[
        int, typer.Option(help="GitHub API timeout in seconds.")
    ] = 20,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Run ktlint and report every finding as a warning or failure."""
    configure_logging(verbose)
    target = None if dry_run else _require_pull_request(repo, pr)
    if treat_errors_as_warnings and treat_errors_as_failures:
        raise typer.BadParameter(
            "Use only one of --treat-errors-as-warnings and --treat-errors-as-failures."
        )
    severity_override: bool | None = None
    if treat_errors_as_warnings or treat_errors_as_failures:
        severity_override = treat_errors_as_warnings

    mode = RenderMode.INLINE if inline else RenderMode.AGGREGATED
    try:
        config = load_config(
            {
                "report_file": report_file,
                "gradle_task": gradle_task,
                "skip_gradle_task": True if skip_gradle_task else None,
                "use_staged_file_only": True if staged_only else None,
                "treat_errors_as_warnings": severity_override,
            }
        )
    except ConfigError as error:
        typer.echo(f"ktlint-review failed: {error}")
        raise typer.Exit(code=1) from error

    if dry_run and config.use_staged_file_only:
        raise typer.BadParameter("--staged-only needs a pull request; drop --dry-run.")

    build_runner = GradleBuildRunner(project_dir)

    try:
        if target is None:
            sink = CollectingSink()
            outcome = lint(config=config, mode=mode, sink=sink, build_runner=build_runner)
            typer.echo(render_text_report(outcome.actions))
        else:
            repo_full_name, pr_number = target
            with build_github_client(timeout_seconds=timeout_seconds) as client:
                metadata = fetch_pull_request_metadata(
                    client=client, repo_full_name=repo_full_name, pr_number=pr_number
                )
                files = fetch_pull_request_files(
                    client=client, repo_full_name=repo_full_name, pr_number=pr_number
                )
                github_sink = GitHubReviewSink(
                    client=client,
                    repo_full_name=repo_full_name,
                    metadata=metadata,
                    files=files,
                )
                outcome = lint(
                    config=config,
                    mode=mode,
                    sink=github_sink,
                    link_formatter=GitHubLinkFormatter(repo_full_name, metadata.head_sha),
                    build_runner=build_runner,
                    changed_files=PullRequestChangedFiles(files),
                )
                result = github_sink.publish(notices=outcome.notices)
            typer.echo(render_text_report(outcome.actions))
            for warning in result.warnings:
                typer.echo(warning)
    except MalformedReport as error:
        typer.echo(f"ktlint-review failed: malformed report '{error.path}': {error}")
        raise typer.Exit(code=1) from error
    except UnsupportedMode as error:
        typer.echo(f"ktlint-review failed: {error}")
        raise typer.Exit(code=1) from error
    except (GitHubAuthError, GitHubInputError) as error:
        typer.echo(f"ktlint-review failed: {error}")
        raise typer.Exit(code=1) from error
    except GitHubApiError as error:
        typer.echo(
            "ktlint-review failed: GitHub API error "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"ktlint-review failed: network error ({error}).")
        raise typer.Exit(code=1) from error

    _echo_outcome(outcome)
    if outcome.failed:
        raise typer.Exit(code=1)


@app.command("auth-check")
def auth_check_command(
    repo: Annotated[
        str | None,
        typer.Option(help="Optional repository in owner/repo format for permission check."),
    ] = None,
    pr: Annotated[
        int | None,
        typer.Option(help="Optional pull request number used with --repo for permission check."),
    ] = None,
    timeout_seconds: Annotated[
        int, typer.Option(help="GitHub API timeout in seconds for the validation call.")
    ] = 20,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Validate GitHub token setup and optional PR read access."""
    if (repo is None) != (pr is None):
        raise typer.BadParameter("Provide both --repo and --pr together, or neither.")

    try:
        _token, token_source = get_github_token_with_source()
    except GitHubAuthError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Token detected in {token_source}.")

    try:
        with build_github_client(timeout_seconds=timeout_seconds, trust_env=trust_env) as client:
            login = fetch_authenticated_user_login(client=client)
            typer.echo(f"Authenticated as GitHub user '{login}'.")

            if repo is not None and pr is not None:
                fetch_pull_request_metadata(
                    client=client,
                    repo_full_name=repo,
                    pr_number=pr,
                )
                fetch_pull_request_files(
                    client=client,
                    repo_full_name=repo,
                    pr_number=pr,
                )
                typer.echo(f"Repository/PR access check passed for {repo}#{pr}.")
    except GitHubApiError as error:
        typer.echo(
            "GitHub auth check failed: "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"GitHub auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error
    except ImportError as error:
        typer.echo(
            "GitHub auth check failed: proxy transport dependency is missing. "
            "Try `ktlint-review auth-check --no-trust-env`, or install `httpx[socks]`."
        )
        raise typer.Exit(code=1) from error

    typer.echo("GitHub token setup is valid.")
