"""Load ktlint JSON reports into an ordered sequence of findings."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from ktlint_review.schema import Finding, Report, ReportFileEntry

logger = logging.getLogger(__name__)

_REPORT_DOCUMENT_ADAPTER = TypeAdapter(list[ReportFileEntry])


class MalformedReport(ValueError):
    """Raised when an existing report document cannot be parsed."""

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message)
        self.path = path


def split_report_paths(report_file: str) -> tuple[str, ...]:
    """Split a comma-separated report setting into candidate paths, keeping order."""
    return tuple(part.strip() for part in report_file.split(",") if part.strip())


def load_report(path: Path | str) -> Report:
    """Parse one report document; every shape or type problem is fatal."""
    source_path = str(path)
    try:
        raw_text = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as error:
        raise MalformedReport(
            f"Report '{source_path}' is not valid UTF-8.", path=source_path
        ) from error
    except OSError as error:
        raise MalformedReport(
            f"Report '{source_path}' could not be read: {error}", path=source_path
        ) from error

    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as error:
        raise MalformedReport(
            f"Report '{source_path}' is not valid JSON: {error}", path=source_path
        ) from error

    try:
        entries = _REPORT_DOCUMENT_ADAPTER.validate_python(payload)
        findings = tuple(
            Finding(file_path=entry.file, line=error_entry.line, message=error_entry.message)
            for entry in entries
            for error_entry in entry.errors
        )
    except ValidationError as error:
        raise MalformedReport(
            f"Report '{source_path}' does not match the expected ktlint JSON shape: "
            f"{error.error_count()} validation error(s).",
            path=source_path,
        ) from error

    return Report(source_path=source_path, findings=findings)


def load_reports(paths: Iterable[Path | str]) -> tuple[Report, ...]:
    """Load every existing report in the given order, skipping absent paths."""
    reports: list[Report] = []
    for path in paths:
        if not Path(path).exists():
            logger.debug("Report %s does not exist; skipping", path)
            continue
        report = load_report(path)
        logger.debug("Loaded %d finding(s) from %s", len(report.findings), report.source_path)
        reports.append(report)
    return tuple(reports)


def merge_findings(reports: Iterable[Report]) -> tuple[Finding, ...]:
    """Concatenate findings in report order, then document order."""
    return tuple(finding for report in reports for finding in report.findings)


def load_findings(paths: Iterable[Path | str]) -> tuple[Finding, ...]:
    """Load and merge findings from all existing report paths."""
    return merge_findings(load_reports(paths))
