"""Review action delivery and markdown comment rendering."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Protocol

from ktlint_review.schema import ActionKind, RenderedAction

COMMENT_MARKER = "<!-- ktlint-review:summary -->"
COMMENT_TITLE = "ktlint"
MAX_COMMENT_LENGTH = 65536
WARNING_ICON = ":warning:"
FAILURE_ICON = ":no_entry_sign:"


class ReviewSink(Protocol):
    """Host capability receiving rendered actions."""

    def warn(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
        """Deliver a non-blocking message."""

    def fail(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
        """Deliver a blocking message."""


@dataclass(frozen=True, slots=True)
class SinkMessage:
    """One message captured by a collecting sink."""

    message: str
    file: str | None = None
    line: int | None = None


@dataclass(slots=True)
class CollectingSink:
    """In-memory sink that records warnings and failures in delivery order."""

    warnings: list[SinkMessage] = field(default_factory=list)
    failures: list[SinkMessage] = field(default_factory=list)

    def warn(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
        self.warnings.append(SinkMessage(message=message, file=file, line=line))

    def fail(self, message: str, *, file: str | None = None, line: int | None = None) -> None:
        self.failures.append(SinkMessage(message=message, file=file, line=line))


def dispatch_actions(actions: Iterable[RenderedAction], sink: ReviewSink) -> None:
    """Deliver each action to the sink method matching its kind."""
    for action in actions:
        match action.kind:
            case ActionKind.WARN:
                sink.warn(action.message, file=action.file_path, line=action.line)
            case ActionKind.FAIL:
                sink.fail(action.message, file=action.file_path, line=action.line)


def _escape_table_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", "<br />")


def _pluralize(noun: str, count: int) -> str:
    return noun if count == 1 else f"{noun}s"


def _table_row(icon: str, message: str) -> str:
    return f"| {icon} | {_escape_table_cell(message)} |"


def _render_table(header: str, rows: Sequence[str]) -> list[str]:
    lines = [f"|      | {header} |", "| ---- | ---- |"]
    lines.extend(rows)
    lines.append("")
    return lines


def _compose_comment(
    *,
    failure_rows: Sequence[str],
    failure_total: int,
    warning_rows: Sequence[str],
    warning_total: int,
    notices: Sequence[str],
    inline_comment_count: int,
    omitted: int,
) -> str:
    lines = [COMMENT_MARKER, f"## {COMMENT_TITLE}", ""]
    if failure_total:
        header = f"{failure_total} {_pluralize('Error', failure_total)}"
        lines.extend(_render_table(header, failure_rows))
    if warning_total:
        header = f"{warning_total} {_pluralize('Warning', warning_total)}"
        lines.extend(_render_table(header, warning_rows))
    if omitted:
        lines.append(
            f"_{omitted} more {_pluralize('finding', omitted)} not shown because the comment "
            "reached the GitHub size limit; see the job log for the full list._"
        )
        lines.append("")
    if inline_comment_count:
        lines.append(
            f"> {inline_comment_count} {_pluralize('finding', inline_comment_count)} "
            "posted as inline review comments."
        )
        lines.append("")
    for notice in notices:
        lines.append(f"> {notice}")
        lines.append("")
    if not failure_total and not warning_total and not notices and not inline_comment_count:
        lines.append(":white_check_mark: No ktlint issues found.")
        lines.append("")
    return "\n".join(lines).rstrip("\n") + "\n"


def render_markdown_comment(
    *,
    warnings: Sequence[str],
    failures: Sequence[str],
    notices: Sequence[str] = (),
    inline_comment_count: int = 0,
    max_length: int = MAX_COMMENT_LENGTH,
) -> str:
    """Render the summary pull request comment, failures before warnings.

    Table headers always carry the full counts. When the body would exceed
    `max_length`, trailing rows are replaced by a single "more findings" line.
    """
    failure_rows = [_table_row(FAILURE_ICON, message) for message in failures]
    warning_rows = [_table_row(WARNING_ICON, message) for message in warnings]
    compose = partial(
        _compose_comment,
        failure_total=len(failures),
        warning_total=len(warnings),
        notices=notices,
        inline_comment_count=inline_comment_count,
    )
    body = compose(failure_rows=failure_rows, warning_rows=warning_rows, omitted=0)
    if len(body) <= max_length:
        return body

    all_rows = failure_rows + warning_rows
    skeleton = compose(failure_rows=(), warning_rows=(), omitted=len(all_rows))
    budget = max_length - len(skeleton)
    kept = 0
    for row in all_rows:
        row_length = len(row) + 1
        if row_length > budget:
            break
        budget -= row_length
        kept += 1

    kept_failures = min(kept, len(failure_rows))
    return compose(
        failure_rows=failure_rows[:kept_failures],
        warning_rows=warning_rows[: kept - kept_failures],
        omitted=len(all_rows) - kept,
    )


def render_text_report(actions: Sequence[RenderedAction]) -> str:
    """Render actions as plain console lines."""
    if not actions:
        return "No ktlint issues found."
    lines = []
    for action in actions:
        if action.is_inline:
            lines.append(f"[{action.kind}] {action.file_path}:{action.line}: {action.message}")
        else:
            lines.append(f"[{action.kind}] {action.message}")
    return "\n".join(lines)
