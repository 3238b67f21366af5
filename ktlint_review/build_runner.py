"""Gradle invocation and changed-file scoping for the ktlint task."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

GRADLEW_NAME = "gradlew"
KOTLIN_SUFFIX = ".kt"
GIT_FILTER_PROPERTY = "internalKtlintGitFilter"


class BuildRunner(Protocol):
    """Runs the lint build task that produces report documents."""

    def gradlew_exists(self) -> bool:
        """Return whether the gradle wrapper is available."""

    def run(self, task: str, target_filter: Sequence[str] | None = None) -> int:
        """Run `task`, optionally scoped to `target_filter`, and return its exit status."""


class ChangedFileProvider(Protocol):
    """Supplies the files changed in the current revision."""

    def list_changed(self) -> Sequence[str]:
        """Return changed file paths."""


def select_kotlin_targets(changed_files: Sequence[str]) -> tuple[str, ...]:
    """Keep only Kotlin source files, in the order given."""
    return tuple(path for path in changed_files if path.endswith(KOTLIN_SUFFIX))


def build_gradle_command(task: str, target_filter: Sequence[str] | None = None) -> list[str]:
    """Build the gradle wrapper argument vector."""
    command = [f"./{GRADLEW_NAME}", task]
    if target_filter is not None:
        joined_targets = "\n".join(target_filter)
        command.append(f"-P{GIT_FILTER_PROPERTY}={joined_targets}")
    return command


class GradleBuildRunner:
    """Runs the gradle wrapper found in a project directory."""

    def __init__(self, project_dir: Path | str = ".") -> None:
        self._project_dir = Path(project_dir)

    def gradlew_exists(self) -> bool:
        return (self._project_dir / GRADLEW_NAME).is_file()

    def run(self, task: str, target_filter: Sequence[str] | None = None) -> int:
        command = build_gradle_command(task, target_filter)
        logger.info("Running %s in %s", " ".join(command[:2]), self._project_dir)
        completed = subprocess.run(command, cwd=self._project_dir, check=False)
        if completed.returncode != 0:
            logger.info("Gradle task %s exited with status %d", task, completed.returncode)
        return completed.returncode
