"""Turn findings into review actions for the aggregated or inline presentation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from ktlint_review.schema import Finding, RenderedAction, RenderMode, SeverityPolicy


class UnsupportedMode(ValueError):
    """Raised when a caller asks for a presentation mode that does not exist."""

    def __init__(self, value: object) -> None:
        supported = ", ".join(mode.value for mode in RenderMode)
        super().__init__(f"Unsupported render mode {value!r}. Expected one of: {supported}.")
        self.value = value


class LinkFormatter(Protocol):
    """Host capability producing a clickable label for a file line."""

    def format(self, file_path: str, line: int) -> str:
        """Return the label for `file_path` at `line`."""


class PlainLinkFormatter:
    """Link formatter that emits the bare `path#Lline` anchor."""

    def format(self, file_path: str, line: int) -> str:
        return format_location(file_path, line)


def format_location(file_path: str, line: int) -> str:
    """Build the `path#Lline` anchor used by code hosts."""
    return f"{file_path}#L{line}"


def resolve_mode(value: RenderMode | str) -> RenderMode:
    """Normalize a mode value, rejecting anything outside the two known modes."""
    if isinstance(value, RenderMode):
        return value
    if isinstance(value, str):
        try:
            return RenderMode(value.strip().lower())
        except ValueError as error:
            raise UnsupportedMode(value) from error
    raise UnsupportedMode(value)


def render(
    findings: Sequence[Finding],
    policy: SeverityPolicy,
    mode: RenderMode | str,
    *,
    link_formatter: LinkFormatter | None = None,
) -> tuple[RenderedAction, ...]:
    """Render one action per finding, preserving input order."""
    resolved_mode = resolve_mode(mode)
    kind = policy.action_kind()

    if resolved_mode is RenderMode.INLINE:
        return tuple(
            RenderedAction(
                kind=kind,
                message=finding.message,
                file_path=finding.file_path,
                line=finding.line,
            )
            for finding in findings
        )

    formatter = link_formatter or PlainLinkFormatter()
    return tuple(
        RenderedAction(
            kind=kind,
            message=f"{formatter.format(finding.file_path, finding.line)}: {finding.message}",
        )
        for finding in findings
    )
