"""Unit tests for the job runner: retry guard, preflight, dispatch lanes and aggregation."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gauntlet_orchestrator.config.schema import (
    CheckGateConfig,
    GauntletConfig,
    ProjectConfig,
    ReviewGateConfig,
)
from gauntlet_orchestrator.control_plane.scheduler import (
    Runner,
    compute_stats,
    derive_run_status,
)
from gauntlet_orchestrator.domain.models import (
    GateResult,
    GateStatus,
    Job,
    JobKind,
    RunStatus,
    Violation,
    ViolationStatus,
)
from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory
from gauntlet_orchestrator.persistence.recovery import RecoveredState, SkippedFinding
from gauntlet_orchestrator.synthesis_plane.reviewers.base import (
    HealthState,
    HealthStatus,
    ReviewerRegistry,
    ReviewRequest,
)
from gauntlet_orchestrator.verification_plane.command import CommandResult, CommandSpec

_DIFF = "diff --git a/a.py b/a.py\n--- a/a.py\n+++ b/a.py\n@@ -0,0 +1,1 @@\n+x = 1\n"


class ScriptedExecutor:
    """Maps each command to an exit code; records the order commands ran in."""

    def __init__(self, exit_codes: dict[str, int] | None = None, *, delay: float = 0.0) -> None:
        self.exit_codes = exit_codes or {}
        self.delay = delay
        self.commands: list[str] = []

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.commands.append(spec.command)
        if self.delay:
            await asyncio.sleep(self.delay)
        if spec.command == "echo crash":
            raise RuntimeError("executor exploded")
        code = self.exit_codes.get(spec.command, 0)
        return CommandResult(spec.command, code, "", "", 1)


class StaticReviewer:
    def __init__(self, name: str, output: str) -> None:
        self.name = name
        self.output = output
        self.calls = 0

    def is_available(self) -> bool:
        return True

    async def check_health(self, *, check_usage_limit: bool = False) -> HealthStatus:
        return HealthStatus(True, HealthState.HEALTHY)

    async def execute(self, request: ReviewRequest) -> str:
        self.calls += 1
        return self.output


def check_job(name: str, *, parallel: bool = False, fail_fast: bool = False) -> Job:
    config = CheckGateConfig(
        name=name, command=f"echo {name}", parallel=parallel, fail_fast=fail_fast
    )
    return Job(f"check:.:{name}", JobKind.CHECK, name, ".", ".", config)


def review_job(name: str = "quality") -> Job:
    config = ReviewGateConfig(name=name, prompt="Review.", num_reviews=1)
    return Job(f"review:.:{name}", JobKind.REVIEW, name, ".", ".", config)


def make_runner(
    tmp_path: Path,
    *,
    executor: ScriptedExecutor | None = None,
    reviewers: list[StaticReviewer] | None = None,
    recovered: RecoveredState | None = None,
    **project: object,
) -> tuple[Runner, ArtifactDirectory]:
    settings = ProjectConfig(**project)  # type: ignore[arg-type]
    config = GauntletConfig(project_root=tmp_path, project=settings)
    artifacts = ArtifactDirectory(tmp_path / "gauntlet_logs")
    runner = Runner(
        config,
        artifacts,
        registry=ReviewerRegistry(reviewers or [], logger=MagicMock()),
        executor=executor or ScriptedExecutor(),
        diff_provider=lambda _entry_point: _DIFF,
        recovered=recovered,
        logger=MagicMock(),
    )
    return runner, artifacts


def seed_logs(artifacts: ArtifactDirectory, last_run: int) -> None:
    artifacts.root.mkdir(parents=True, exist_ok=True)
    for run in range(1, last_run + 1):
        log_path = artifacts.root / f"check_._lint.{run}.log"
        log_path.write_text("Result: fail\n", encoding="utf-8")


@pytest.mark.parametrize(
    ("retry_limit", "all_passed", "any_skipped", "expected"),
    [
        (True, True, False, RunStatus.RETRY_LIMIT_EXCEEDED),
        (False, False, True, RunStatus.FAILED),
        (False, True, True, RunStatus.PASSED_WITH_WARNINGS),
        (False, True, False, RunStatus.PASSED),
    ],
)
def test_derive_run_status(
    retry_limit: bool, all_passed: bool, any_skipped: bool, expected: RunStatus
) -> None:
    status = derive_run_status(
        retry_limit_exceeded=retry_limit, all_passed=all_passed, any_skipped=any_skipped
    )
    assert status is expected


def test_compute_stats_counts_new_review_violations_and_failed_checks() -> None:
    jobs = [check_job("lint"), review_job()]
    results = [
        GateResult("check:.:lint", GateStatus.ERROR, 1),
        GateResult(
            "review:.:quality",
            GateStatus.FAIL,
            1,
            violations=(
                Violation(file="a.py", line=1, issue="x"),
                Violation(file="a.py", line=2, issue="y"),
            ),
        ),
    ]
    fixed = Violation(file="b.py", line=1, issue="z", status=ViolationStatus.FIXED)
    recovered = RecoveredState(
        failures_by_job={"review_._quality": {1: (fixed,)}},
        skipped=(SkippedFinding("review_._quality", "claude", fixed),),
    )

    stats = compute_stats(results, jobs, recovered)

    assert (stats.fixed, stats.skipped, stats.failed) == (1, 1, 3)


@pytest.mark.asyncio
async def test_all_checks_pass(tmp_path: Path) -> None:
    runner, artifacts = make_runner(tmp_path)

    outcome = await runner.run([check_job("lint"), check_job("test", parallel=True)])

    assert outcome.status is RunStatus.PASSED
    assert outcome.run_number == 1
    assert [result.job_id for result in outcome.results] == ["check:.:lint", "check:.:test"]
    assert (artifacts.root / "check_._lint.1.log").exists()


@pytest.mark.asyncio
async def test_run_number_shared_by_every_job(tmp_path: Path) -> None:
    runner, artifacts = make_runner(tmp_path)
    seed_logs(artifacts, 2)

    outcome = await runner.run([check_job("lint"), check_job("test")])

    assert outcome.run_number == 3
    assert (artifacts.root / "check_._test.3.log").exists()


@pytest.mark.asyncio
async def test_run_beyond_retry_limit_executes_nothing(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner, artifacts = make_runner(tmp_path, executor=executor, max_retries=3)
    seed_logs(artifacts, 4)
    before = artifacts.filenames()

    outcome = await runner.run([check_job("lint")])

    assert outcome.status is RunStatus.RETRY_LIMIT_EXCEEDED
    assert outcome.run_number == 5
    assert executor.commands == []
    assert artifacts.filenames() == before


@pytest.mark.asyncio
async def test_final_allowed_run_that_fails_exceeds_retry_limit(tmp_path: Path) -> None:
    executor = ScriptedExecutor({"echo lint": 1})
    runner, artifacts = make_runner(tmp_path, executor=executor, max_retries=3)
    seed_logs(artifacts, 3)

    outcome = await runner.run([check_job("lint")])

    assert outcome.run_number == 4
    assert executor.commands == ["echo lint"]
    assert outcome.status is RunStatus.RETRY_LIMIT_EXCEEDED


@pytest.mark.asyncio
async def test_final_allowed_run_that_passes_is_a_pass(tmp_path: Path) -> None:
    runner, artifacts = make_runner(tmp_path, max_retries=3)
    seed_logs(artifacts, 3)

    outcome = await runner.run([check_job("lint")])

    assert outcome.status is RunStatus.PASSED


@pytest.mark.asyncio
async def test_fail_fast_cancels_remaining_sequential_jobs_only(tmp_path: Path) -> None:
    executor = ScriptedExecutor({"echo lint": 2}, delay=0.05)
    runner, _ = make_runner(tmp_path, executor=executor)

    outcome = await runner.run(
        [
            check_job("lint", fail_fast=True),
            check_job("test"),
            check_job("types", parallel=True),
        ]
    )

    assert outcome.status is RunStatus.FAILED
    assert sorted(executor.commands) == ["echo lint", "echo types"]
    assert [result.job_id for result in outcome.results] == ["check:.:lint", "check:.:types"]


@pytest.mark.asyncio
async def test_allow_parallel_false_runs_everything_sequentially(tmp_path: Path) -> None:
    executor = ScriptedExecutor({"echo lint": 1})
    runner, _ = make_runner(tmp_path, executor=executor, allow_parallel=False)

    await runner.run(
        [check_job("lint", fail_fast=True), check_job("types", parallel=True)]
    )

    assert executor.commands == ["echo lint"]


@pytest.mark.asyncio
async def test_preflight_failure_is_error_and_others_still_run(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner, artifacts = make_runner(tmp_path, executor=executor)
    missing = Job(
        "check:.:ghost",
        JobKind.CHECK,
        "ghost",
        ".",
        ".",
        CheckGateConfig(name="ghost", command="no-such-tool-xyz run"),
    )

    outcome = await runner.run([missing, check_job("lint")])

    assert outcome.status is RunStatus.FAILED
    assert outcome.results[0].status is GateStatus.ERROR
    assert "Missing command: no-such-tool-xyz" in outcome.results[0].message
    assert executor.commands == ["echo lint"]
    assert (artifacts.root / "check_._ghost.1.log").exists()


@pytest.mark.asyncio
async def test_fail_fast_preflight_failure_stops_later_jobs(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner, _ = make_runner(tmp_path, executor=executor)
    missing = Job(
        "check:.:ghost",
        JobKind.CHECK,
        "ghost",
        ".",
        ".",
        CheckGateConfig(name="ghost", command="no-such-tool-xyz", fail_fast=True),
    )

    outcome = await runner.run([missing, check_job("lint")])

    assert executor.commands == []
    assert [result.job_id for result in outcome.results] == ["check:.:ghost"]


@pytest.mark.asyncio
async def test_job_crash_becomes_error_result(tmp_path: Path) -> None:
    runner, _ = make_runner(tmp_path)

    outcome = await runner.run([check_job("crash"), check_job("lint")])

    assert outcome.results[0].status is GateStatus.ERROR
    assert outcome.results[0].message == "executor exploded"
    assert outcome.results[1].status is GateStatus.PASS


@pytest.mark.asyncio
async def test_review_without_healthy_reviewer_fails_preflight(tmp_path: Path) -> None:
    runner, _ = make_runner(tmp_path)

    outcome = await runner.run([review_job()])

    assert outcome.results[0].status is GateStatus.ERROR
    assert "no healthy adapters available" in outcome.results[0].message


@pytest.mark.asyncio
async def test_review_failure_counts_new_violations(tmp_path: Path) -> None:
    output = json.dumps(
        {
            "status": "fail",
            "violations": [{"file": "a.py", "line": 1, "issue": "bug", "priority": "high"}],
        }
    )
    reviewer = StaticReviewer("claude", output)
    runner, artifacts = make_runner(tmp_path, reviewers=[reviewer])

    outcome = await runner.run([review_job()])

    assert reviewer.calls == 1
    assert outcome.status is RunStatus.FAILED
    assert outcome.stats.failed == 1
    assert (artifacts.root / "review_._quality_claude@1.1.json").exists()


@pytest.mark.asyncio
async def test_skipped_findings_downgrade_pass_to_warning(tmp_path: Path) -> None:
    skipped = Violation(file="a.py", line=1, issue="nit", status=ViolationStatus.SKIPPED)
    recovered = RecoveredState(skipped=(SkippedFinding("review_._quality", "claude", skipped),))
    reviewer = StaticReviewer("claude", json.dumps({"status": "pass"}))
    runner, _ = make_runner(tmp_path, reviewers=[reviewer], recovered=recovered)

    outcome = await runner.run([review_job()])

    assert outcome.status is RunStatus.PASSED_WITH_WARNINGS
    assert outcome.stats.skipped == 1
