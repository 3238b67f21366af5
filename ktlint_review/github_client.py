"""GitHub API wrapper, auth helpers and the pull request review sink."""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
from dotenv import load_dotenv

from ktlint_review.output import (
    COMMENT_MARKER,
    FAILURE_ICON,
    WARNING_ICON,
    CollectingSink,
    SinkMessage,
    render_markdown_comment,
)
from ktlint_review.renderer import format_location

logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_WEB_BASE_URL = "https://github.com"
GITHUB_API_VERSION = "2022-11-28"
HUNK_HEADER_PATTERN = re.compile(
    r"^@@ -(?P<base_start>\d+)(?:,(?P<base_count>\d+))? "
    r"\+(?P<head_start>\d+)(?:,(?P<head_count>\d+))? @@"
)
GITHUB_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5


class GitHubAuthError(RuntimeError):
    """Raised when required GitHub authentication is missing."""


class GitHubInputError(ValueError):
    """Raised when repository or PR input values are invalid."""


class GitHubApiError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class GitHubRateLimitError(GitHubApiError):
    """Raised when GitHub API rate limiting prevents request completion."""


@dataclass(frozen=True, slots=True)
class ChangedRange:
    """Span of line numbers in the PR head revision."""

    line_start: int
    line_end: int

    def contains(self, line: int) -> bool:
        """Return whether `line` falls inside the span."""
        return self.line_start <= line <= self.line_end


@dataclass(frozen=True, slots=True)
class PullRequestMeta:
    """Normalized PR metadata needed to anchor review comments."""

    number: int
    title: str
    state: str
    html_url: str
    base_sha: str
    head_sha: str


@dataclass(frozen=True, slots=True)
class PullRequestFile:
    """Changed file details from GitHub pull request files API."""

    path: str
    status: str
    patch: str | None
    commentable_ranges: tuple[ChangedRange, ...] = ()


@dataclass(frozen=True, slots=True)
class ReviewComment:
    """One line-anchored comment in a pull request review."""

    path: str
    line: int
    body: str


@dataclass(frozen=True, slots=True)
class PublishResult:
    """What a review sink posted to GitHub."""

    review_id: int | None = None
    inline_comment_count: int = 0
    summary_comment_id: int | None = None
    summary_message_count: int = 0
    warnings: tuple[str, ...] = field(default_factory=tuple)


def _ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def _require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise GitHubApiError(
            f"Expected string field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise GitHubApiError(
            f"Expected integer field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read a required object field from payload."""
    value = payload.get(key)
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected object field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _request_json(client: httpx.Client, endpoint: str) -> dict[str, Any]:
    """Perform a JSON request against GitHub API."""
    response = _request_with_retries(
        client,
        endpoint,
        accept_header="application/vnd.github+json",
    )
    return _ensure_mapping(response.json(), context=endpoint)


def _request_json_list(client: httpx.Client, endpoint: str) -> list[dict[str, Any]]:
    """Perform a JSON request that returns an array of objects."""
    response = _request_with_retries(
        client,
        endpoint,
        accept_header="application/vnd.github+json",
    )
    payload = response.json()
    if not isinstance(payload, list):
        raise GitHubApiError(
            "Expected JSON array in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    rows: list[dict[str, Any]] = []
    for item in payload:
        if not isinstance(item, dict):
            raise GitHubApiError(
                "Expected all array items to be JSON objects in GitHub response.",
                status_code=500,
                endpoint=endpoint,
            )
        rows.append(item)
    return rows


def _send_json(
    client: httpx.Client,
    method: str,
    endpoint: str,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Perform a single write request; writes are never retried."""
    response = client.request(
        method,
        endpoint,
        json=payload,
        headers={"Accept": "application/vnd.github+json"},
    )
    if response.status_code >= 400:
        _raise_http_error(response, endpoint)
    return _ensure_mapping(response.json(), context=endpoint)


def parse_head_commentable_ranges_from_patch(patch: str) -> tuple[ChangedRange, ...]:
    """Extract head-side line spans that accept review comments from a unified diff patch.

    Added lines and unchanged context lines inside a hunk are both commentable on the
    RIGHT side; deleted lines only exist in the base revision.
    """
    ranges: list[ChangedRange] = []
    in_hunk = False
    head_line = 0
    range_start: int | None = None
    range_end: int | None = None

    def flush_open_range() -> None:
        nonlocal range_start, range_end
        if range_start is None or range_end is None:
            return
        ranges.append(ChangedRange(line_start=range_start, line_end=range_end))
        range_start = None
        range_end = None

    for line in patch.splitlines():
        header_match = HUNK_HEADER_PATTERN.match(line)
        if header_match is not None:
            flush_open_range()
            in_hunk = True
            head_line = int(header_match.group("head_start"))
            continue

        if not in_hunk:
            continue

        if (line.startswith("+") and not line.startswith("+++")) or line.startswith(" "):
            if range_start is None:
                range_start = head_line
            range_end = head_line
            head_line += 1
            continue

        if line.startswith("-") and not line.startswith("---"):
            continue

        if line.startswith("\\"):
            continue

        flush_open_range()
        in_hunk = False

    flush_open_range()
    return tuple(ranges)


def _is_retryable_status(status_code: int) -> bool:
    """Return whether a status code is retryable under policy."""
    return status_code == 429 or 500 <= status_code < 600


def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After header as seconds if present and valid."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        parsed_value = float(retry_after)
    except ValueError:
        return None
    if parsed_value < 0:
        return None
    return parsed_value


def _compute_retry_delay_seconds(response: httpx.Response, *, attempt_number: int) -> float:
    """Compute retry delay from Retry-After header or exponential backoff."""
    retry_after_seconds = _parse_retry_after_seconds(response)
    if retry_after_seconds is not None:
        return retry_after_seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    time.sleep(seconds)


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitHub API response."""
    message = f"GitHub API request failed with status {response.status_code} for '{endpoint}'."
    if response.status_code == 429:
        raise GitHubRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise GitHubApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


def _request_with_retries(
    client: httpx.Client,
    endpoint: str,
    *,
    accept_header: str | None = None,
    max_attempts: int = GITHUB_MAX_RETRIES,
) -> httpx.Response:
    """Perform a GET request with retry handling for 429/5xx responses."""
    request_headers = {"Accept": accept_header} if accept_header else None
    for attempt_number in range(1, max_attempts + 1):
        response = client.get(endpoint, headers=request_headers)
        if response.status_code < 400:
            return response

        should_retry = _is_retryable_status(response.status_code) and attempt_number < max_attempts
        if not should_retry:
            _raise_http_error(response, endpoint)

        delay_seconds = _compute_retry_delay_seconds(response, attempt_number=attempt_number)
        logger.debug(
            "GitHub returned %d for %s; retrying in %.1fs",
            response.status_code,
            endpoint,
            delay_seconds,
        )
        _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a response.")


def fetch_pull_request_metadata(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
) -> PullRequestMeta:
    """Fetch pull request metadata from GitHub."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = f"/repos/{owner}/{repo}/pulls/{normalized_pr_number}"

    payload = _request_json(client, endpoint)
    base_payload = _require_object(payload, key="base", endpoint=endpoint)
    head_payload = _require_object(payload, key="head", endpoint=endpoint)

    return PullRequestMeta(
        number=_require_int(payload, key="number", endpoint=endpoint),
        title=_require_str(payload, key="title", endpoint=endpoint),
        state=_require_str(payload, key="state", endpoint=endpoint),
        html_url=_require_str(payload, key="html_url", endpoint=endpoint),
        base_sha=_require_str(base_payload, key="sha", endpoint=endpoint),
        head_sha=_require_str(head_payload, key="sha", endpoint=endpoint),
    )


def fetch_pull_request_files(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
) -> tuple[PullRequestFile, ...]:
    """Fetch all changed files for a pull request with pagination."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    base_endpoint = f"/repos/{owner}/{repo}/pulls/{normalized_pr_number}/files"
    per_page = 100

    files: list[PullRequestFile] = []
    page = 1
    while True:
        endpoint = f"{base_endpoint}?per_page={per_page}&page={page}"
        rows = _request_json_list(client, endpoint)
        if not rows:
            break

        for row in rows:
            filename = _require_str(row, key="filename", endpoint=endpoint)
            status = _require_str(row, key="status", endpoint=endpoint)
            patch_value = row.get("patch")
            if patch_value is not None and not isinstance(patch_value, str):
                raise GitHubApiError(
                    "Expected 'patch' to be a string or null in GitHub response.",
                    status_code=500,
                    endpoint=endpoint,
                )

            files.append(
                PullRequestFile(
                    path=filename,
                    status=status,
                    patch=patch_value,
                    commentable_ranges=(
                        parse_head_commentable_ranges_from_patch(patch_value)
                        if patch_value is not None
                        else ()
                    ),
                )
            )

        if len(rows) < per_page:
            break
        page += 1

    return tuple(files)


def find_marker_comment_id(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
    marker: str = COMMENT_MARKER,
) -> int | None:
    """Return the id of the first issue comment containing `marker`, if any."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    base_endpoint = f"/repos/{owner}/{repo}/issues/{normalized_pr_number}/comments"
    per_page = 100

    page = 1
    while True:
        endpoint = f"{base_endpoint}?per_page={per_page}&page={page}"
        rows = _request_json_list(client, endpoint)
        for row in rows:
            body = row.get("body")
            if isinstance(body, str) and marker in body:
                return _require_int(row, key="id", endpoint=endpoint)
        if len(rows) < per_page:
            return None
        page += 1


def upsert_issue_comment(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
    body: str,
    create_if_missing: bool = True,
) -> int | None:
    """Update the marker comment in place, or create it; return the comment id."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    existing_id = find_marker_comment_id(
        client=client,
        repo_full_name=repo_full_name,
        pr_number=normalized_pr_number,
    )

    if existing_id is not None:
        endpoint = f"/repos/{owner}/{repo}/issues/comments/{existing_id}"
        payload = _send_json(client, "PATCH", endpoint, {"body": body})
        return _require_int(payload, key="id", endpoint=endpoint)

    if not create_if_missing:
        return None

    endpoint = f"/repos/{owner}/{repo}/issues/{normalized_pr_number}/comments"
    payload = _send_json(client, "POST", endpoint, {"body": body})
    return _require_int(payload, key="id", endpoint=endpoint)


def create_pull_request_review(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
    commit_id: str,
    comments: Sequence[ReviewComment],
    body: str = "",
) -> int:
    """Post a COMMENT review carrying line-anchored comments."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = f"/repos/{owner}/{repo}/pulls/{normalized_pr_number}/reviews"
    payload = _send_json(
        client,
        "POST",
        endpoint,
        {
            "commit_id": commit_id,
            "event": "COMMENT",
            "body": body,
            "comments": [
                {"path": comment.path, "line": comment.line, "side": "RIGHT", "body": comment.body}
                for comment in comments
            ],
        },
    )
    return _require_int(payload, key="id", endpoint=endpoint)


class GitHubLinkFormatter:
    """Link formatter producing blob links pinned to the PR head commit."""

    def __init__(self, repo_full_name: str, head_sha: str) -> None:
        owner, repo = parse_repo_full_name(repo_full_name)
        self._blob_base_url = f"{GITHUB_WEB_BASE_URL}/{owner}/{repo}/blob/{head_sha}"

    def format(self, file_path: str, line: int) -> str:
        label = format_location(file_path, line)
        url = f"{self._blob_base_url}/{quote(file_path.lstrip('/'), safe='/')}#L{line}"
        return f"<a href='{url}'>{label}</a>"


class PullRequestChangedFiles:
    """Changed file provider backed by the pull request files listing."""

    def __init__(self, files: Sequence[PullRequestFile]) -> None:
        self._files = tuple(files)

    def list_changed(self) -> tuple[str, ...]:
        return tuple(pull_file.path for pull_file in self._files if pull_file.status != "removed")


class GitHubReviewSink:
    """Review sink that buffers actions and publishes them to one pull request."""

    def __init__(
        self,
        *,
        client: httpx.Client,
        repo_full_name: str,
        metadata: PullRequestMeta,
        files: Sequence[PullRequestFile],
    ) -> None:
        self._client = client
        self._repo_full_name = repo_full_name
        self._metadata = metadata
        self._ranges_by_path = {
            pull_file.path: pull_file.commentable_ranges for pull_file in files
        }
        self._link_formatter = GitHubLinkFormatter(repo_full_name, metadata.head_sha)
        self._buffer = CollectingSink()

    def warn(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
        self._buffer.warn(message, file=file, line=line)

    def fail(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
        self._buffer.fail(message, file=file, line=line)

    def _is_in_diff(self, file: str, line: int) -> bool:
        ranges = self._ranges_by_path.get(file, ())
        return any(changed_range.contains(line) for changed_range in ranges)

    def _split(
        self, messages: Sequence[SinkMessage], icon: str
    ) -> tuple[list[ReviewComment], list[str], int]:
        """Split messages into review comments, summary lines and an outside-diff count."""
        comments: list[ReviewComment] = []
        summary_lines: list[str] = []
        outside_diff = 0
        for item in messages:
            if item.file is None or item.line is None:
                summary_lines.append(item.message)
            elif self._is_in_diff(item.file, item.line):
                comments.append(
                    ReviewComment(path=item.file, line=item.line, body=f"{icon} {item.message}")
                )
            else:
                link = self._link_formatter.format(item.file, item.line)
                summary_lines.append(f"{link}: {item.message}")
                outside_diff += 1
        return comments, summary_lines, outside_diff

    def publish(self, *, notices: Sequence[str] = ()) -> PublishResult:
        """Post buffered actions: in-diff annotations as a review, the rest as a comment."""
        failure_comments, summary_failures, failures_outside = self._split(
            self._buffer.failures, FAILURE_ICON
        )
        warning_comments, summary_warnings, warnings_outside = self._split(
            self._buffer.warnings, WARNING_ICON
        )
        review_comments = failure_comments + warning_comments

        review_id: int | None = None
        if review_comments:
            review_id = create_pull_request_review(
                client=self._client,
                repo_full_name=self._repo_full_name,
                pr_number=self._metadata.number,
                commit_id=self._metadata.head_sha,
                comments=review_comments,
            )
            logger.info(
                "Posted review %s with %d inline comment(s)", review_id, len(review_comments)
            )

        has_summary = bool(summary_failures or summary_warnings or notices)
        body = render_markdown_comment(
            warnings=summary_warnings,
            failures=summary_failures,
            notices=notices,
            inline_comment_count=len(review_comments),
        )
        summary_comment_id = upsert_issue_comment(
            client=self._client,
            repo_full_name=self._repo_full_name,
            pr_number=self._metadata.number,
            body=body,
            create_if_missing=has_summary,
        )
        if summary_comment_id is not None:
            logger.info("Updated summary comment %s", summary_comment_id)

        warnings: list[str] = []
        outside_diff = failures_outside + warnings_outside
        if outside_diff:
            warnings.append(
                f"{outside_diff} inline annotation(s) fall outside the pull request diff "
                "and were added to the summary comment."
            )

        return PublishResult(
            review_id=review_id,
            inline_comment_count=len(review_comments),
            summary_comment_id=summary_comment_id,
            summary_message_count=len(summary_failures) + len(summary_warnings),
            warnings=tuple(warnings),
        )


def parse_repo_full_name(repo_full_name: str) -> tuple[str, str]:
    """Parse and validate repository input in owner/repo format."""
    owner, separator, repo = repo_full_name.strip().partition("/")
    if not separator or not owner or not repo or "/" in repo:
        raise GitHubInputError(
            f"Invalid repo '{repo_full_name}'. Expected format is owner/repo."
        )
    return owner, repo


def validate_pr_number(pr_number: int) -> int:
    """Validate and normalize pull request number input."""
    if pr_number <= 0:
        raise GitHubInputError(f"Invalid PR number '{pr_number}'. Expected a positive integer.")
    return pr_number


def get_github_token() -> str:
    """Read GitHub token from environment and fail fast if missing."""
    token, _source = get_github_token_with_source()
    return token


def get_github_token_with_source() -> tuple[str, str]:
    """Read GitHub token and return token value with environment source key."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    github_token = os.getenv("GITHUB_TOKEN")
    if github_token:
        return github_token, "GITHUB_TOKEN"

    gh_token = os.getenv("GH_TOKEN")
    if gh_token:
        return gh_token, "GH_TOKEN"

    message = "Missing GitHub token. Set GITHUB_TOKEN (preferred) or GH_TOKEN."
    raise GitHubAuthError(message)


def fetch_authenticated_user_login(*, client: httpx.Client) -> str:
    """Fetch authenticated GitHub user login for token validation."""
    endpoint = "/user"
    payload = _request_json(client, endpoint)
    return _require_str(payload, key="login", endpoint=endpoint)


def build_github_client(
    timeout_seconds: int = 20,
    *,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated GitHub HTTP client."""
    token = get_github_token()
    headers = {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    return httpx.Client(
        base_url=GITHUB_API_BASE_URL,
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
