"""
gauntlet-orchestrator — review dispatch and convergence

File: src/gauntlet_orchestrator/verification_plane/review_gate.py

Purpose
- Decide which review slots of a gate execute this iteration and which adapter
  serves each slot.
- Execute the slots concurrently, persist one artifact per slot, and aggregate
  the gate status.

Functional requirements
- Slot ``i`` (1-indexed) is served by ``adapters[(i - 1) % k]``.
- A slot with a recorded pass is skipped only when the gate has more than one slot
  and some other slot executes; if every slot would be skipped, slot 1 runs.
- Skip decisions are made before any slot starts.
- Reviewer output is parsed strictly; unparseable output is a slot error.
- The gate passes only if no executed slot errored or reported a new violation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from gauntlet_orchestrator.config.schema import ReviewGateConfig
from gauntlet_orchestrator.constants import DEFAULT_REVIEW_TIMEOUT_SECONDS
from gauntlet_orchestrator.domain.errors import InvocationError, ReviewerTimeoutError
from gauntlet_orchestrator.domain.models import (
    GateResult,
    GateStatus,
    Priority,
    ReviewArtifact,
    ReviewStatus,
    Violation,
    utc_timestamp,
)
from gauntlet_orchestrator.integration_plane.diff_scope import parse_diff
from gauntlet_orchestrator.persistence.artifacts import ArtifactKey
from gauntlet_orchestrator.synthesis_plane.reviewers.base import ReviewRequest
from gauntlet_orchestrator.utils.concurrency import gather_all, run_with_timeout
from gauntlet_orchestrator.verification_plane.review_output import (
    build_review_prompt,
    filter_violations,
    parse_review_output,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from gauntlet_orchestrator.domain.models import Job, PassedSlot
    from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory, JobLog
    from gauntlet_orchestrator.synthesis_plane.reviewers.base import (
        ReviewerAdapter,
        ReviewerRegistry,
    )

NO_HEALTHY_ADAPTERS_MESSAGE: Final[str] = "no healthy adapters available"
_TIMEOUT_GRACE_SECONDS: Final[float] = 5.0


@dataclass(frozen=True, slots=True)
class SlotPlan:
    """Dispatch decision for one review slot."""

    review_index: int
    adapter: str
    skip: bool = False
    pass_iteration: int | None = None
    forced: bool = False


@dataclass(frozen=True, slots=True)
class SlotOutcome:
    plan: SlotPlan
    status: ReviewStatus
    message: str
    violations: tuple[Violation, ...] = ()
    artifact_path: str | None = None


def plan_slots(
    num_reviews: int,
    adapters: Sequence[str],
    passed_slots: Mapping[int, PassedSlot] | None = None,
) -> tuple[SlotPlan, ...]:
    """Round-robin assignment plus pass-state skipping with the safety latch.

    Skipping matches recorded passes by slot index only, whichever adapter
    produced them.
    """

    if num_reviews < 1:
        raise ValueError("num_reviews must be >= 1")
    if not adapters:
        raise ValueError("at least one adapter is required")

    passed = passed_slots or {}
    assignments = [
        (index, adapters[(index - 1) % len(adapters)]) for index in range(1, num_reviews + 1)
    ]
    eligible = {index for index, _ in assignments if num_reviews > 1 and index in passed}
    latch = len(eligible) == num_reviews

    plans: list[SlotPlan] = []
    for index, adapter in assignments:
        if index not in eligible:
            plans.append(SlotPlan(index, adapter))
        elif latch and index == 1:
            plans.append(SlotPlan(index, adapter, forced=True))
        else:
            plans.append(
                SlotPlan(index, adapter, skip=True, pass_iteration=passed[index].pass_iteration)
            )
    return tuple(plans)


class ReviewGate:
    """Executes one review job: plan slots, invoke reviewers, persist artifacts."""

    def __init__(
        self,
        registry: ReviewerRegistry,
        artifacts: ArtifactDirectory,
        project_root: Path,
        *,
        check_usage_limit: bool = False,
        rerun_threshold: Priority = Priority.HIGH,
        logger: Any | None = None,
    ) -> None:
        self._registry = registry
        self._artifacts = artifacts
        self._project_root = Path(project_root)
        self._check_usage_limit = check_usage_limit
        self._rerun_threshold = rerun_threshold
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def available_adapters(self, preference: Sequence[str]) -> tuple[ReviewerAdapter, ...]:
        return await self._registry.healthy_adapters(
            preference, check_usage_limit=self._check_usage_limit
        )

    async def execute(
        self,
        job: Job,
        *,
        run_number: int,
        diff: str,
        preference: Sequence[str],
        prior_failures: Mapping[int, tuple[Violation, ...]] | None = None,
        passed_slots: Mapping[int, PassedSlot] | None = None,
        verification: bool = False,
    ) -> GateResult:
        config = _review_config(job)
        started_ns = time.monotonic_ns()

        if not diff.strip():
            return GateResult(
                job_id=job.id,
                status=GateStatus.PASS,
                duration_ms=_elapsed_ms(started_ns),
                message="No changes to review",
            )

        adapters = {adapter.name: adapter for adapter in await self.available_adapters(preference)}
        if not adapters:
            self._logger.warning("review_dispatch_failed", job_id=job.id, reason="no_adapters")
            return GateResult(
                job_id=job.id,
                status=GateStatus.ERROR,
                duration_ms=_elapsed_ms(started_ns),
                message=f"Review dispatch failed: {NO_HEALTHY_ADAPTERS_MESSAGE}",
            )

        plans = plan_slots(config.num_reviews, tuple(adapters), passed_slots)
        prior = prior_failures or {}
        all_prior = tuple(item for slot in sorted(prior) for item in prior[slot])
        threshold = self._rerun_threshold if verification else None
        diff_ranges = parse_diff(diff)
        self._logger.info(
            "review_dispatch",
            job_id=job.id,
            run_number=run_number,
            slots=[f"{plan.adapter}@{plan.review_index}" for plan in plans],
            skipped=[plan.review_index for plan in plans if plan.skip],
            safety_latch=any(plan.forced for plan in plans),
        )

        outcomes: list[SlotOutcome] = [
            self._record_skip(job, plan, run_number) for plan in plans if plan.skip
        ]
        outcomes.extend(
            await gather_all(
                self._run_slot(
                    job,
                    config,
                    plan,
                    adapters[plan.adapter],
                    run_number=run_number,
                    diff=diff,
                    diff_ranges=diff_ranges,
                    slot_prior=prior.get(plan.review_index, ()),
                    all_prior=all_prior,
                    threshold=threshold,
                )
                for plan in plans
                if not plan.skip
            )
        )
        outcomes.sort(key=lambda outcome: outcome.plan.review_index)
        return _aggregate(job, outcomes, _elapsed_ms(started_ns))

    def _record_skip(self, job: Job, plan: SlotPlan, run_number: int) -> SlotOutcome:
        key = ArtifactKey.for_review(job.id, plan.adapter, plan.review_index, run_number)
        log = self._artifacts.open_log(key)
        log.write(f"Review skipped: previously passed in iteration {plan.pass_iteration}")
        log.write(
            f"Adapter: {plan.adapter}\nReview index: @{plan.review_index}\n"
            f"Status: {ReviewStatus.SKIPPED_PRIOR_PASS.value}"
        )
        path = self._artifacts.write_review(
            key,
            ReviewArtifact(
                adapter=plan.adapter,
                timestamp=utc_timestamp(),
                status=ReviewStatus.SKIPPED_PRIOR_PASS,
                pass_iteration=plan.pass_iteration,
            ),
        )
        self._logger.info(
            "review_slot_skipped",
            job_id=job.id,
            review_index=plan.review_index,
            pass_iteration=plan.pass_iteration,
        )
        return SlotOutcome(
            plan,
            ReviewStatus.SKIPPED_PRIOR_PASS,
            f"Skipped: previously passed in iteration {plan.pass_iteration}",
            artifact_path=str(path),
        )

    async def _run_slot(
        self,
        job: Job,
        config: ReviewGateConfig,
        plan: SlotPlan,
        adapter: ReviewerAdapter,
        *,
        run_number: int,
        diff: str,
        diff_ranges: Mapping[str, set[int]],
        slot_prior: Sequence[Violation],
        all_prior: Sequence[Violation],
        threshold: Priority | None,
    ) -> SlotOutcome:
        key = ArtifactKey.for_review(job.id, plan.adapter, plan.review_index, run_number)
        log = self._artifacts.open_log(key)
        label = f"{plan.adapter}@{plan.review_index}"
        log.write(f"[START] {job.id} ({label})")
        log.write(f"Entry point: {job.entry_point}")
        if plan.forced:
            log.write(f"Running @{plan.review_index}: safety latch (all slots previously passed)")

        timeout = config.timeout or DEFAULT_REVIEW_TIMEOUT_SECONDS
        request = ReviewRequest(
            prompt=build_review_prompt(config.prompt, slot_prior),
            diff=diff,
            model=config.model,
            timeout_seconds=timeout,
            cwd=str(self._project_root),
        )

        output = ""
        try:
            output = await self._invoke(adapter, request, timeout)
            log.write(f"--- Review Output ({plan.adapter}) ---\n{output}")
            parsed = parse_review_output(output, source=plan.adapter)
        except InvocationError as exc:
            return self._record_error(job, plan, key, log, exc, output)

        filtered = filter_violations(
            parsed.violations, diff_ranges, prior=all_prior, threshold=threshold
        )
        if filtered.out_of_scope:
            log.write(f"Note: {filtered.out_of_scope} out-of-scope violations filtered")
        if filtered.below_threshold:
            log.write(
                f"Note: {filtered.below_threshold} new violations filtered due to rerun "
                f"threshold ({threshold})"
            )

        status = ReviewStatus.PASS if filtered.passed else ReviewStatus.FAIL
        path = self._artifacts.write_review(
            key,
            ReviewArtifact(
                adapter=plan.adapter,
                timestamp=utc_timestamp(),
                status=status,
                raw_output=output,
                violations=filtered.violations,
            ),
        )
        message = _slot_message(status, filtered.new_violations, parsed.message)
        _write_parsed_result(log, plan.adapter, status, filtered.violations, path)
        log.write(f"Review result ({label}): {status.value} - {message}")
        self._logger.info(
            "review_slot_finished",
            job_id=job.id,
            review_index=plan.review_index,
            adapter=plan.adapter,
            status=status.value,
            violations=len(filtered.new_violations),
            out_of_scope=filtered.out_of_scope,
            below_threshold=filtered.below_threshold,
        )
        return SlotOutcome(
            plan,
            status,
            message,
            violations=filtered.new_violations,
            artifact_path=str(path),
        )

    async def _invoke(
        self, adapter: ReviewerAdapter, request: ReviewRequest, timeout: float
    ) -> str:
        deadline = timeout + _TIMEOUT_GRACE_SECONDS
        try:
            return await run_with_timeout(adapter.execute(request), deadline)
        except TimeoutError:
            raise ReviewerTimeoutError(
                f"{adapter.name} timed out after {timeout:g}s", source=adapter.name
            ) from None

    def _record_error(
        self,
        job: Job,
        plan: SlotPlan,
        key: ArtifactKey,
        log: JobLog,
        exc: InvocationError,
        output: str,
    ) -> SlotOutcome:
        label = f"{plan.adapter}@{plan.review_index}"
        log.write(f"Error running {label}: {exc.detail}")
        log.write(f"Review result ({label}): error - {exc.detail}")
        path = self._artifacts.write_review(
            key,
            ReviewArtifact(
                adapter=plan.adapter,
                timestamp=utc_timestamp(),
                status=ReviewStatus.ERROR,
                raw_output=output,
                error=f"{exc.code}: {exc.detail}",
            ),
        )
        self._logger.warning(
            "review_slot_error",
            job_id=job.id,
            review_index=plan.review_index,
            adapter=plan.adapter,
            code=exc.code,
            detail=exc.detail,
        )
        return SlotOutcome(plan, ReviewStatus.ERROR, exc.detail, artifact_path=str(path))


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


def _review_config(job: Job) -> ReviewGateConfig:
    if not isinstance(job.gate_config, ReviewGateConfig):
        raise TypeError(f"{job.id} does not carry a review gate config")
    return job.gate_config


def _slot_message(
    status: ReviewStatus, new_violations: Sequence[Violation], reviewer_message: str | None
) -> str:
    if status is ReviewStatus.FAIL:
        return f"Found {len(new_violations)} violations"
    return reviewer_message or "Passed"


def _write_parsed_result(
    log: JobLog,
    adapter: str,
    status: ReviewStatus,
    violations: Sequence[Violation],
    artifact_path: Path,
) -> None:
    lines = [f"--- Parsed Result ({adapter}) ---", f"Status: {status.value.upper()}"]
    if status is ReviewStatus.FAIL:
        lines.append(f"Review: {artifact_path}")
        lines.append("Violations:")
        for index, item in enumerate(violations, start=1):
            lines.append(f"{index}. {item.file}:{item.line or '?'} - {item.issue}")
            if item.fix:
                lines.append(f"   Fix: {item.fix}")
    lines.append("---------------------")
    log.write("\n".join(lines))


def _aggregate(job: Job, outcomes: Sequence[SlotOutcome], duration_ms: int) -> GateResult:
    errored = [item for item in outcomes if item.status is ReviewStatus.ERROR]
    failed = [item for item in outcomes if item.status is ReviewStatus.FAIL]
    skipped = [item for item in outcomes if item.status is ReviewStatus.SKIPPED_PRIOR_PASS]

    if errored:
        status, message = GateStatus.ERROR, f"Error in {len(errored)} adapter(s)"
    elif failed:
        status, message = GateStatus.FAIL, f"Failed by {len(failed)} adapter(s)"
    else:
        status, message = GateStatus.PASS, "Passed"
    if skipped:
        message = f"{message} ({len(skipped)} skipped due to prior pass)"

    return GateResult(
        job_id=job.id,
        status=status,
        duration_ms=duration_ms,
        message=message,
        artifact_paths=tuple(
            item.artifact_path for item in outcomes if item.artifact_path is not None
        ),
        violations=tuple(violation for item in outcomes for violation in item.violations),
    )


__all__ = [
    "NO_HEALTHY_ADAPTERS_MESSAGE",
    "ReviewGate",
    "SlotOutcome",
    "SlotPlan",
    "plan_slots",
]
