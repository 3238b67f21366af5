"""The `lint` operation: build, load reports, render and deliver findings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ktlint_review.build_runner import BuildRunner, ChangedFileProvider, select_kotlin_targets
from ktlint_review.config import ReviewConfig
from ktlint_review.loader import load_findings
from ktlint_review.output import ReviewSink, dispatch_actions
from ktlint_review.renderer import LinkFormatter, render, resolve_mode
from ktlint_review.schema import ActionKind, Finding, RenderedAction, RenderMode

logger = logging.getLogger(__name__)

MISSING_GRADLEW_MESSAGE = "Could not find `gradlew` inside current directory"
NO_REPORTS_NOTICE = "Skipping ktlint reporting because no report files available"


@dataclass(frozen=True, slots=True)
class LintOutcome:
    """Result of one lint invocation."""

    mode: RenderMode
    findings: tuple[Finding, ...] = ()
    actions: tuple[RenderedAction, ...] = ()
    notices: tuple[str, ...] = ()
    build_exit_status: int | None = None

    @property
    def failed(self) -> bool:
        """Return whether any delivered action is blocking."""
        return any(action.kind is ActionKind.FAIL for action in self.actions)


def _run_build(
    *,
    config: ReviewConfig,
    build_runner: BuildRunner,
    changed_files: ChangedFileProvider | None,
) -> int:
    """Run the configured gradle task, scoped to changed Kotlin files when requested."""
    if not config.use_staged_file_only:
        return build_runner.run(config.gradle_task)

    if changed_files is None:
        raise ValueError("use_staged_file_only requires a changed file provider.")
    targets = select_kotlin_targets(changed_files.list_changed())
    logger.info("Scoping %s to %d changed Kotlin file(s)", config.gradle_task, len(targets))
    return build_runner.run(config.gradle_task, targets)


def lint(
    *,
    config: ReviewConfig,
    mode: RenderMode | str,
    sink: ReviewSink,
    link_formatter: LinkFormatter | None = None,
    build_runner: BuildRunner | None = None,
    changed_files: ChangedFileProvider | None = None,
) -> LintOutcome:
    """Run ktlint (unless skipped) and deliver one review action per finding."""
    resolved_mode = resolve_mode(mode)

    build_exit_status: int | None = None
    if not config.skip_gradle_task:
        if build_runner is None:
            raise ValueError("A build runner is required unless skip_gradle_task is set.")
        if not build_runner.gradlew_exists():
            action = RenderedAction(kind=ActionKind.FAIL, message=MISSING_GRADLEW_MESSAGE)
            dispatch_actions((action,), sink)
            return LintOutcome(mode=resolved_mode, actions=(action,))
        build_exit_status = _run_build(
            config=config,
            build_runner=build_runner,
            changed_files=changed_files,
        )

    findings = load_findings(config.report_paths())
    notices: tuple[str, ...] = ()
    if not findings:
        logger.info(NO_REPORTS_NOTICE)
        notices = (NO_REPORTS_NOTICE,)

    actions = render(
        findings,
        config.severity_policy(),
        resolved_mode,
        link_formatter=link_formatter,
    )
    dispatch_actions(actions, sink)
    logger.info("Delivered %d %s action(s)", len(actions), resolved_mode.value)

    return LintOutcome(
        mode=resolved_mode,
        findings=findings,
        actions=actions,
        notices=notices,
        build_exit_status=build_exit_status,
    )
