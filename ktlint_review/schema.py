"""Data contracts for lint findings and rendered review actions."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator


class ActionKind(StrEnum):
    """Review host action a finding is delivered as."""

    WARN = "warn"
    FAIL = "fail"


class RenderMode(StrEnum):
    """Supported presentation modes for findings."""

    AGGREGATED = "aggregated"
    INLINE = "inline"


class Finding(BaseModel):
    """One linter violation at a file and line."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    file_path: str = Field(min_length=1)
    line: int = Field(ge=1)
    message: str = Field(min_length=1)


class Report(BaseModel):
    """Findings loaded from one report document."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_path: str
    findings: tuple[Finding, ...] = ()


class SeverityPolicy(BaseModel):
    """Process-wide switch between non-blocking and blocking findings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    treat_errors_as_warnings: bool = True

    def action_kind(self) -> ActionKind:
        """Return the action kind every finding maps to under this policy."""
        if self.treat_errors_as_warnings:
            return ActionKind.WARN
        return ActionKind.FAIL


class RenderedAction(BaseModel):
    """One host-visible review action produced from a finding."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ActionKind
    message: str
    file_path: str | None = None
    line: int | None = None

    @model_validator(mode="after")
    def validate_location(self) -> RenderedAction:
        """Validate that file_path and line are set together or not at all."""
        if (self.file_path is None) != (self.line is None):
            raise ValueError("file_path and line must be provided together")
        return self

    @property
    def is_inline(self) -> bool:
        """Return whether the action is anchored to a file line."""
        return self.file_path is not None


class ReportErrorEntry(BaseModel):
    """One entry of the `errors` array in a ktlint JSON report."""

    model_config = ConfigDict(extra="ignore")

    line: StrictInt
    message: StrictStr


class ReportFileEntry(BaseModel):
    """One file object in a ktlint JSON report."""

    model_config = ConfigDict(extra="ignore")

    file: StrictStr
    errors: list[ReportErrorEntry]
