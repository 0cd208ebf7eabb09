"""
gauntlet-orchestrator — job scheduler (Runner)

File: src/gauntlet_orchestrator/control_plane/scheduler.py

Purpose
- Drive one iteration: retry-limit guard, preflight, parallel/sequential dispatch
  with fail-fast, and aggregation into a terminal status.

Functional requirements
- The run number is read once, before any job starts, and shared by every job.
- A run number above ``max_retries + 1`` executes nothing and writes nothing.
- Preflight failures become ``error`` results; they stop the run only for
  fail-fast jobs.
- Parallel jobs run concurrently with the sequential lane; a failing fail-fast
  sequential check cancels the remaining sequential jobs only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from gauntlet_orchestrator.config.schema import ReviewGateConfig
from gauntlet_orchestrator.domain.errors import PreflightFailure
from gauntlet_orchestrator.domain.models import (
    GateResult,
    GateStatus,
    JobKind,
    RunStatus,
    ViolationStatus,
)
from gauntlet_orchestrator.observability.logging import correlation_scope
from gauntlet_orchestrator.persistence.artifacts import ArtifactKey
from gauntlet_orchestrator.persistence.recovery import RecoveredState
from gauntlet_orchestrator.utils.concurrency import CancellationToken, gather_all
from gauntlet_orchestrator.verification_plane.check_gate import (
    CheckGate,
    preflight_check,
    record_preflight_failure,
)
from gauntlet_orchestrator.verification_plane.review_gate import (
    NO_HEALTHY_ADAPTERS_MESSAGE,
    ReviewGate,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from gauntlet_orchestrator.config.schema import GauntletConfig
    from gauntlet_orchestrator.domain.models import Job
    from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory
    from gauntlet_orchestrator.synthesis_plane.reviewers.base import ReviewerRegistry
    from gauntlet_orchestrator.verification_plane.command import CommandExecutor


@dataclass(frozen=True, slots=True)
class RunnerStats:
    fixed: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class RunnerOutcome:
    """Aggregate of one iteration's job results."""

    run_number: int
    results: tuple[GateResult, ...] = ()
    stats: RunnerStats = RunnerStats()
    retry_limit_exceeded: bool = False

    @property
    def all_passed(self) -> bool:
        return all(result.status is GateStatus.PASS for result in self.results)

    @property
    def any_skipped(self) -> bool:
        return self.stats.skipped > 0

    @property
    def status(self) -> RunStatus:
        return derive_run_status(
            retry_limit_exceeded=self.retry_limit_exceeded,
            all_passed=self.all_passed,
            any_skipped=self.any_skipped,
        )


def derive_run_status(
    *, retry_limit_exceeded: bool, all_passed: bool, any_skipped: bool
) -> RunStatus:
    if retry_limit_exceeded:
        return RunStatus.RETRY_LIMIT_EXCEEDED
    if not all_passed:
        return RunStatus.FAILED
    if any_skipped:
        return RunStatus.PASSED_WITH_WARNINGS
    return RunStatus.PASSED


def compute_stats(
    results: Sequence[GateResult],
    jobs: Sequence[Job],
    recovered: RecoveredState,
) -> RunnerStats:
    """Fixed and skipped come from the recovered artifacts; failed from this iteration."""

    kinds = {job.id: job.kind for job in jobs}
    failed = 0
    for result in results:
        if kinds.get(result.job_id) is JobKind.REVIEW and result.violations:
            failed += sum(1 for item in result.violations if item.status is ViolationStatus.NEW)
        elif result.status is not GateStatus.PASS:
            failed += 1
    fixed = sum(
        1 for item in recovered.prior_violations() if item.status is ViolationStatus.FIXED
    )
    return RunnerStats(fixed=fixed, skipped=len(recovered.skipped), failed=failed)


class Runner:
    """Executes the job list of one invocation."""

    def __init__(
        self,
        config: GauntletConfig,
        artifacts: ArtifactDirectory,
        *,
        registry: ReviewerRegistry,
        executor: CommandExecutor,
        diff_provider: Callable[[str], str],
        recovered: RecoveredState | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._artifacts = artifacts
        self._diff_provider = diff_provider
        self._recovered = recovered if recovered is not None else RecoveredState()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        project_root = Path(config.project_root)
        self._project_root = project_root
        self._check_gate = CheckGate(executor, project_root, logger=self._logger)
        self._review_gate = ReviewGate(
            registry,
            artifacts,
            project_root,
            check_usage_limit=config.project.cli.check_usage_limit,
            rerun_threshold=config.project.rerun_new_issue_threshold,
            logger=self._logger,
        )

    async def run(self, jobs: Sequence[Job]) -> RunnerOutcome:
        run_number = self._artifacts.next_run_number()
        max_allowed = self._config.project.max_retries + 1
        if run_number > max_allowed:
            self._logger.warning(
                "runner_retry_limit_exceeded",
                run_number=run_number,
                max_allowed_runs=max_allowed,
                max_retries=self._config.project.max_retries,
            )
            return RunnerOutcome(run_number=run_number, retry_limit_exceeded=True)

        with correlation_scope(run_number=run_number):
            results: list[GateResult] = []
            stop = CancellationToken()
            runnable = await self._preflight(jobs, run_number, results, stop)

            allow_parallel = self._config.project.allow_parallel
            parallel = [job for job in runnable if allow_parallel and job.parallel]
            sequential = [job for job in runnable if not (allow_parallel and job.parallel)]
            self._logger.info(
                "runner_dispatch",
                run_number=run_number,
                parallel=len(parallel),
                sequential=len(sequential),
                preflight_failures=len(results),
            )

            await gather_all(
                [
                    *(self._execute_into(job, run_number, results) for job in parallel),
                    self._run_sequential(sequential, run_number, results, stop),
                ]
            )

        ordered = _in_job_order(results, jobs)
        outcome = RunnerOutcome(
            run_number=run_number,
            results=ordered,
            stats=compute_stats(ordered, jobs, self._recovered),
        )
        if not outcome.all_passed and run_number == max_allowed:
            outcome = RunnerOutcome(
                run_number=run_number,
                results=outcome.results,
                stats=outcome.stats,
                retry_limit_exceeded=True,
            )
        self._logger.info(
            "runner_finished",
            run_number=run_number,
            status=outcome.status.value,
            fixed=outcome.stats.fixed,
            skipped=outcome.stats.skipped,
            failed=outcome.stats.failed,
        )
        return outcome

    async def _preflight(
        self,
        jobs: Sequence[Job],
        run_number: int,
        results: list[GateResult],
        stop: CancellationToken,
    ) -> list[Job]:
        runnable: list[Job] = []
        for job in jobs:
            if stop.is_cancelled:
                break
            try:
                if job.kind is JobKind.CHECK:
                    preflight_check(job, self._project_root)
                else:
                    await self._preflight_review(job)
            except PreflightFailure as failure:
                self._logger.warning("preflight_failed", job_id=job.id, detail=failure.detail)
                log = (
                    self._artifacts.open_log(ArtifactKey.for_check(job.id, run_number))
                    if job.kind is JobKind.CHECK
                    else None
                )
                results.append(record_preflight_failure(job, failure, log))
                if job.fail_fast:
                    stop.cancel(f"fail_fast:{job.id}")
                continue
            runnable.append(job)
        return runnable

    async def _preflight_review(self, job: Job) -> None:
        review = job.gate_config
        if not isinstance(review, ReviewGateConfig):
            raise TypeError(f"{job.id} does not carry a review gate config")
        preference = self._config.reviewer_preference(review)
        healthy = await self._review_gate.available_adapters(preference)
        if not healthy:
            raise PreflightFailure(job.id, f"Preflight failed: {NO_HEALTHY_ADAPTERS_MESSAGE}")
        if len(healthy) < min(review.num_reviews, len(preference)):
            self._logger.info(
                "review_adapters_reused",
                job_id=job.id,
                healthy=[adapter.name for adapter in healthy],
                num_reviews=review.num_reviews,
            )

    async def _run_sequential(
        self,
        jobs: Sequence[Job],
        run_number: int,
        results: list[GateResult],
        stop: CancellationToken,
    ) -> None:
        for job in jobs:
            if stop.is_cancelled:
                self._logger.info("runner_job_cancelled", job_id=job.id, reason=stop.reason)
                continue
            result = await self._execute_into(job, run_number, results)
            if job.fail_fast and result.status is not GateStatus.PASS:
                stop.cancel(f"fail_fast:{job.id}")

    async def _execute_into(
        self, job: Job, run_number: int, results: list[GateResult]
    ) -> GateResult:
        with correlation_scope(job_id=job.id):
            result = await self._execute(job, run_number)
        results.append(result)
        return result

    async def _execute(self, job: Job, run_number: int) -> GateResult:
        try:
            if job.kind is JobKind.CHECK:
                log = self._artifacts.open_log(ArtifactKey.for_check(job.id, run_number))
                return await self._check_gate.execute(job, log)
            return await self._execute_review(job, run_number)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - one job's crash becomes its error result
            self._logger.exception("job_execution_failed", job_id=job.id)
            return GateResult(
                job_id=job.id,
                status=GateStatus.ERROR,
                duration_ms=0,
                message=str(exc) or type(exc).__name__,
            )

    async def _execute_review(self, job: Job, run_number: int) -> GateResult:
        review = job.gate_config
        if not isinstance(review, ReviewGateConfig):
            raise TypeError(f"{job.id} does not carry a review gate config")
        diff = await asyncio.to_thread(self._diff_provider, job.entry_point)
        prior = self._recovered.failures_for(job.id)
        return await self._review_gate.execute(
            job,
            run_number=run_number,
            diff=diff,
            preference=self._config.reviewer_preference(review),
            prior_failures=prior,
            passed_slots=self._recovered.passed_slots_for(job.id),
            verification=bool(prior),
        )


def _in_job_order(results: Sequence[GateResult], jobs: Sequence[Job]) -> tuple[GateResult, ...]:
    position = {job.id: index for index, job in enumerate(jobs)}
    return tuple(sorted(results, key=lambda result: position.get(result.job_id, len(position))))


__all__ = [
    "Runner",
    "RunnerOutcome",
    "RunnerStats",
    "compute_stats",
    "derive_run_status",
]
