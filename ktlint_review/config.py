"""Invocation configuration resolved once from defaults, environment and CLI flags."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ktlint_review.loader import split_report_paths
from ktlint_review.schema import SeverityPolicy

DEFAULT_REPORT_FILE = "app/build/reports/ktlint/ktlintSourceSetCheck.json"
DEFAULT_GRADLE_TASK = "ktlintCheck"

ENV_VAR_BY_FIELD = {
    "report_file": "KTLINT_REPORT_FILE",
    "gradle_task": "KTLINT_GRADLE_TASK",
    "skip_gradle_task": "KTLINT_SKIP_GRADLE_TASK",
    "use_staged_file_only": "KTLINT_USE_STAGED_FILE_ONLY",
    "treat_errors_as_warnings": "KTLINT_TREAT_ERRORS_AS_WARNINGS",
}


class ConfigError(ValueError):
    """Raised when configuration values cannot be resolved."""


class ReviewConfig(BaseModel):
    """Immutable configuration for one lint invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    report_file: str = DEFAULT_REPORT_FILE
    gradle_task: str = Field(default=DEFAULT_GRADLE_TASK, min_length=1)
    skip_gradle_task: bool = False
    use_staged_file_only: bool = False
    treat_errors_as_warnings: bool = True

    def report_paths(self) -> tuple[str, ...]:
        """Split the comma-separated report setting into candidate paths."""
        return split_report_paths(self.report_file)

    def severity_policy(self) -> SeverityPolicy:
        """Return the severity policy snapshot for this invocation."""
        return SeverityPolicy(treat_errors_as_warnings=self.treat_errors_as_warnings)


def load_config(overrides: Mapping[str, object] | None = None) -> ReviewConfig:
    """Build configuration from `.env`, environment variables and explicit overrides."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    values: dict[str, object] = {}
    for field_name, env_var in ENV_VAR_BY_FIELD.items():
        env_value = os.getenv(env_var)
        if env_value is not None and env_value.strip():
            values[field_name] = env_value.strip()

    for field_name, value in (overrides or {}).items():
        if value is not None:
            values[field_name] = value

    try:
        return ReviewConfig.model_validate(values)
    except ValidationError as error:
        raise ConfigError(f"Invalid ktlint-review configuration: {error}") from error
