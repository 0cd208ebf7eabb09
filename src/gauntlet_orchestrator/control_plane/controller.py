"""
gauntlet-orchestrator — run controller

File: src/gauntlet_orchestrator/control_plane/controller.py

Purpose
- Expose the single ``run(options) -> RunOutcome`` operation: lock, resolve the diff
  anchor, detect changes, plan jobs, hand them to the Runner, persist execution state.
- Expose ``detect(options)`` for planning without execution.

Functional requirements
- The lock is taken before any other side effect and released on every exit path.
- Expected failures (lock conflict, configuration errors, no changes, no gates) are
  returned as a terminal ``RunOutcome``; ``run`` never raises for them.
- A fresh run (no current-iteration artifacts) checks auto-clean and resolves a fix
  base from the recorded execution state; a rerun recovers failures from artifacts
  and scopes the diff to the recorded working-tree snapshot.
- Execution state is written after every run that executed gates; runs ending in
  ``no_changes``, ``no_applicable_gates`` or ``error`` leave it untouched.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from gauntlet_orchestrator.config.loader import ConfigLoadError, load_config
from gauntlet_orchestrator.config.schema import ConfigValidationError
from gauntlet_orchestrator.control_plane.scheduler import Runner
from gauntlet_orchestrator.domain.errors import GauntletError, LockConflictError
from gauntlet_orchestrator.domain.models import JobKind, RunOutcome, RunStatus
from gauntlet_orchestrator.integration_plane.change_detector import (
    ChangeDetector,
    ChangeOptions,
    DiffMode,
    is_ci_environment,
)
from gauntlet_orchestrator.integration_plane.diff_stats import compute_diff_stats
from gauntlet_orchestrator.integration_plane.git_engine import GitEngine
from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory
from gauntlet_orchestrator.persistence.execution_state import ExecutionStateStore
from gauntlet_orchestrator.persistence.recovery import RecoveredState, recover
from gauntlet_orchestrator.planning.entry_points import expand_entry_points
from gauntlet_orchestrator.planning.jobs import filter_jobs, generate_jobs
from gauntlet_orchestrator.synthesis_plane.reviewers.tool_adapter import build_default_registry
from gauntlet_orchestrator.verification_plane.command import LocalSubprocessExecutor

if TYPE_CHECKING:
    from gauntlet_orchestrator.config.schema import GauntletConfig
    from gauntlet_orchestrator.domain.models import Job
    from gauntlet_orchestrator.synthesis_plane.reviewers.base import ReviewerRegistry
    from gauntlet_orchestrator.verification_plane.command import CommandExecutor

ProgressCallback = Callable[[str], None]

STATUS_MESSAGES: Final[Mapping[RunStatus, str]] = {
    RunStatus.PASSED: "All gates passed.",
    RunStatus.PASSED_WITH_WARNINGS: "Passed with warnings: some issues were skipped.",
    RunStatus.NO_APPLICABLE_GATES: "No applicable gates for these changes.",
    RunStatus.NO_CHANGES: "No changes detected.",
    RunStatus.FAILED: "Gates failed. Fix the reported issues and run again.",
    RunStatus.RETRY_LIMIT_EXCEEDED: (
        "Retry limit exceeded. Run `gauntlet clean` to archive the logs and continue."
    ),
    RunStatus.LOCK_CONFLICT: "Another gauntlet run is already in progress.",
    RunStatus.ERROR: "Unexpected error occurred.",
}


@dataclass(frozen=True, slots=True)
class RunOptions:
    """Caller-selected knobs for one invocation."""

    base_branch: str | None = None
    gate_filter: str | None = None
    commit: str | None = None
    uncommitted: bool = False
    kind: JobKind | None = None


@dataclass(frozen=True, slots=True)
class RunPlan:
    """Everything decided before the first job starts."""

    base_branch: str
    mode: DiffMode
    rerun: bool
    changed_files: tuple[str, ...]
    jobs: tuple[Job, ...]
    change_options: ChangeOptions
    recovered: RecoveredState = field(default_factory=RecoveredState)
    warnings: tuple[str, ...] = ()


def effective_base_branch(
    override: str | None,
    configured: str,
    environ: Mapping[str, str],
) -> str:
    """CLI override, then ``GITHUB_BASE_REF`` when running in CI, then config."""

    if override:
        return override
    github_base = environ.get("GITHUB_BASE_REF", "").strip()
    if github_base and is_ci_environment(environ):
        return github_base
    return configured


def status_message(status: RunStatus) -> str:
    return STATUS_MESSAGES[status]


class GauntletController:
    """Coordinates lock -> anchor -> changes -> jobs -> runner -> execution state."""

    def __init__(
        self,
        project_root: str | Path | None = None,
        *,
        registry: ReviewerRegistry | None = None,
        executor: CommandExecutor | None = None,
        environ: Mapping[str, str] | None = None,
        progress: ProgressCallback | None = None,
        logger: Any | None = None,
    ) -> None:
        self._project_root = project_root
        self._registry = registry
        self._executor = executor if executor is not None else LocalSubprocessExecutor()
        self._environ = dict(os.environ if environ is None else environ)
        self._progress = progress
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def _log(self, message: str) -> None:
        if self._progress is not None:
            self._progress(message)

    def load(self) -> GauntletConfig:
        return load_config(self._project_root, environ=self._environ)

    def run(self, options: RunOptions | None = None) -> RunOutcome:
        """Execute one invocation and return its terminal outcome."""

        opts = options or RunOptions()
        try:
            config = self.load()
        except (ConfigLoadError, ConfigValidationError) as exc:
            self._logger.error("config_invalid", error=str(exc))
            return RunOutcome(status=RunStatus.ERROR, message=str(exc), config_error=True)

        artifacts = ArtifactDirectory(config.log_dir)
        try:
            with artifacts.lock():
                return self._run_locked(config, artifacts, opts)
        except LockConflictError as exc:
            self._logger.warning("lock_conflict", lock_path=exc.lock_path, owner=exc.owner)
            return _terminal(RunStatus.LOCK_CONFLICT)
        except OSError as exc:
            self._logger.error("lock_unavailable", log_dir=str(config.log_dir), error=str(exc))
            return RunOutcome(
                status=RunStatus.ERROR,
                message=f"{status_message(RunStatus.ERROR)} {exc}",
            )

    def detect(self, options: RunOptions | None = None) -> RunPlan:
        """Plan an invocation without taking the lock or executing anything."""

        opts = options or RunOptions()
        config = self.load()
        artifacts = ArtifactDirectory(config.log_dir)
        git = GitEngine(config.project_root)
        return self._plan(config, artifacts, git, opts, allow_auto_clean=False)

    def _run_locked(
        self,
        config: GauntletConfig,
        artifacts: ArtifactDirectory,
        options: RunOptions,
    ) -> RunOutcome:
        git = GitEngine(config.project_root)
        store = ExecutionStateStore(artifacts, git, logger=self._logger)
        try:
            plan = self._plan(config, artifacts, git, options, allow_auto_clean=True)
            for warning in plan.warnings:
                self._log(f"Warning: {warning}")

            if not plan.changed_files:
                self._log("No changes detected.")
                return _terminal(RunStatus.NO_CHANGES)
            self._log(f"Found {len(plan.changed_files)} changed files.")

            if not plan.jobs:
                self._log("No applicable gates for these changes.")
                return _terminal(RunStatus.NO_APPLICABLE_GATES)

            detector = self._detector(git, plan.base_branch, plan.change_options, config)
            diff_stats = compute_diff_stats(detector, logger=self._logger)
            self._logger.info(
                "run_started",
                mode="verification" if plan.rerun else "full",
                diff_mode=plan.mode.value,
                jobs=len(plan.jobs),
                files=diff_stats.files_total,
                lines_added=diff_stats.lines_added,
                lines_removed=diff_stats.lines_removed,
            )
            self._log(f"Running {len(plan.jobs)} gates...")

            runner = Runner(
                config,
                artifacts,
                registry=self._resolve_registry(config),
                executor=self._executor,
                diff_provider=detector.review_diff,
                recovered=plan.recovered,
                logger=self._logger,
            )
            outcome = asyncio.run(runner.run(plan.jobs))

            try:
                store.write()
            except (GauntletError, OSError) as exc:
                self._logger.warning("execution_state_write_failed", error=str(exc))

            status = outcome.status
            if status is RunStatus.PASSED:
                archived = artifacts.clean()
                self._logger.info("logs_archived", reason="all_passed", archived=archived)

            return RunOutcome(
                status=status,
                fixed_count=outcome.stats.fixed,
                skipped_count=outcome.stats.skipped,
                failed_count=outcome.stats.failed,
                retry_limit_exceeded=outcome.retry_limit_exceeded,
                message=status_message(status),
                run_number=outcome.run_number,
                results=outcome.results,
                diff_stats=diff_stats,
            )
        except (ConfigLoadError, ConfigValidationError) as exc:
            self._logger.error("config_invalid", error=str(exc))
            return RunOutcome(status=RunStatus.ERROR, message=str(exc), config_error=True)
        except Exception as exc:  # noqa: BLE001 - run() maps every failure to a status
            self._logger.exception("run_failed")
            return RunOutcome(
                status=RunStatus.ERROR,
                message=f"{status_message(RunStatus.ERROR)} {exc}".strip(),
            )

    def _plan(
        self,
        config: GauntletConfig,
        artifacts: ArtifactDirectory,
        git: GitEngine,
        options: RunOptions,
        *,
        allow_auto_clean: bool,
    ) -> RunPlan:
        base_branch = effective_base_branch(
            options.base_branch, config.project.base_branch, self._environ
        )
        store = ExecutionStateStore(artifacts, git, logger=self._logger)
        logs_exist = artifacts.has_existing_logs()
        rerun = logs_exist and not options.commit
        recovered = RecoveredState()
        warnings: list[str] = []
        change_options = ChangeOptions(commit=options.commit, uncommitted=options.uncommitted)

        if not logs_exist and allow_auto_clean:
            reason = store.auto_clean_reason(base_branch)
            if reason is not None:
                self._log(f"Auto-cleaning logs ({reason.value})...")
                store.perform_auto_clean(reason)

        if rerun:
            self._log("Existing logs detected; running in verification mode...")
            recovered = recover(artifacts, options.gate_filter, logger=self._logger)
            if recovered.has_failures:
                self._log(
                    f"Found {len(recovered.failures_by_job) + len(recovered.failed_checks)} "
                    f"gate(s) with {recovered.violation_count} previous violation(s)"
                )
            state = store.read()
            fix_base = state.working_tree_ref if state is not None else None
            change_options = ChangeOptions(uncommitted=True, fix_base=fix_base or None)
        elif not logs_exist:
            state = store.read()
            if state is not None:
                resolution = store.resolve_fix_base(state, base_branch)
                if resolution.warning:
                    warnings.append(resolution.warning)
                if resolution.fix_base:
                    change_options = ChangeOptions(fix_base=resolution.fix_base)

        if options.commit or options.uncommitted:
            change_options = ChangeOptions(
                commit=options.commit,
                uncommitted=options.uncommitted,
                fix_base=change_options.fix_base,
            )

        detector = self._detector(git, base_branch, change_options, config)
        self._log("Detecting changes...")
        changed = detector.changed_files()
        jobs: list[Job] = []
        if changed:
            entry_points = expand_entry_points(config.project.entry_points, changed)
            jobs = generate_jobs(
                config,
                entry_points,
                ci=is_ci_environment(self._environ),
                logger=self._logger,
            )
            jobs = filter_jobs(jobs, gate_filter=options.gate_filter, kind=options.kind)

        return RunPlan(
            base_branch=base_branch,
            mode=detector.mode,
            rerun=rerun,
            changed_files=changed,
            jobs=tuple(jobs),
            change_options=change_options,
            recovered=recovered,
            warnings=tuple(warnings),
        )

    def _detector(
        self,
        git: GitEngine,
        base_branch: str,
        change_options: ChangeOptions,
        config: GauntletConfig,
    ) -> ChangeDetector:
        return ChangeDetector(
            git,
            base_branch,
            change_options,
            exclude_paths=_log_dir_exclusions(config),
            environ=self._environ,
            logger=self._logger,
        )

    def _resolve_registry(self, config: GauntletConfig) -> ReviewerRegistry:
        if self._registry is None:
            self._registry = build_default_registry(config.project_root)
        return self._registry


def run(
    options: RunOptions | None = None,
    *,
    project_root: str | Path | None = None,
    registry: ReviewerRegistry | None = None,
    executor: CommandExecutor | None = None,
    environ: Mapping[str, str] | None = None,
    progress: ProgressCallback | None = None,
    logger: Any | None = None,
) -> RunOutcome:
    """Module-level shortcut for ``GauntletController(...).run(options)``."""

    controller = GauntletController(
        project_root,
        registry=registry,
        executor=executor,
        environ=environ,
        progress=progress,
        logger=logger,
    )
    return controller.run(options)


def _terminal(status: RunStatus) -> RunOutcome:
    return RunOutcome(status=status, message=status_message(status))


def _log_dir_exclusions(config: GauntletConfig) -> tuple[str, ...]:
    log_dir = config.log_dir.resolve()
    try:
        relative = log_dir.relative_to(Path(config.project_root).resolve())
    except ValueError:
        return ()
    return (relative.as_posix(),)


__all__ = [
    "STATUS_MESSAGES",
    "GauntletController",
    "RunOptions",
    "RunPlan",
    "effective_base_branch",
    "run",
    "status_message",
]
