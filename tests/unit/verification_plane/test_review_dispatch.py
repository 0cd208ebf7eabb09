"""Unit tests for review slot planning and the review gate."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from gauntlet_orchestrator.config.schema import ReviewGateConfig
from gauntlet_orchestrator.domain.models import (
    GateStatus,
    Job,
    JobKind,
    PassedSlot,
    Priority,
    ReviewStatus,
    Violation,
)
from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory, ArtifactKey
from gauntlet_orchestrator.persistence.recovery import recover
from gauntlet_orchestrator.synthesis_plane.reviewers.base import (
    HealthState,
    HealthStatus,
    ReviewerRegistry,
    ReviewRequest,
)
from gauntlet_orchestrator.verification_plane import review_gate
from gauntlet_orchestrator.verification_plane.review_gate import (
    NO_HEALTHY_ADAPTERS_MESSAGE,
    ReviewGate,
    plan_slots,
)

_DIFF = """\
diff --git a/src/app.py b/src/app.py
--- a/src/app.py
+++ b/src/app.py
@@ -1,1 +1,3 @@
 import os
+value = os.environ["X"]
+print(value)
"""

_PASS = json.dumps({"status": "pass", "message": "Looks good"})


def _fail(*violations: dict[str, object]) -> str:
    return json.dumps({"status": "fail", "violations": list(violations)})


class FakeAdapter:
    def __init__(
        self,
        name: str,
        outputs: list[str] | None = None,
        *,
        healthy: bool = True,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.outputs = list(outputs or [_PASS])
        self.healthy = healthy
        self.delay = delay
        self.error = error
        self.requests: list[ReviewRequest] = []

    def is_available(self) -> bool:
        return True

    async def check_health(self, *, check_usage_limit: bool = False) -> HealthStatus:
        if self.healthy:
            return HealthStatus(True, HealthState.HEALTHY)
        return HealthStatus(True, HealthState.UNHEALTHY, "usage limit")

    async def execute(self, request: ReviewRequest) -> str:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]


def _job(num_reviews: int = 1, *, timeout: float | None = None) -> Job:
    return Job(
        id="review:.:code-quality",
        kind=JobKind.REVIEW,
        name="code-quality",
        entry_point=".",
        working_directory=".",
        gate_config=ReviewGateConfig(
            name="code-quality", prompt="Find bugs.", num_reviews=num_reviews, timeout=timeout
        ),
    )


def _gate(tmp_path: Path, *adapters: FakeAdapter) -> tuple[ReviewGate, ArtifactDirectory]:
    artifacts = ArtifactDirectory(tmp_path / "logs")
    registry = ReviewerRegistry(adapters, logger=MagicMock())
    gate = ReviewGate(registry, artifacts, tmp_path, logger=MagicMock())
    return gate, artifacts


# ----------------------------------------------------------------------
# Slot planning
# ----------------------------------------------------------------------


def test_plan_slots_round_robin() -> None:
    plans = plan_slots(5, ["claude", "codex"])
    assert [plan.adapter for plan in plans] == ["claude", "codex", "claude", "codex", "claude"]
    assert [plan.review_index for plan in plans] == [1, 2, 3, 4, 5]


def test_plan_slots_single_slot_never_skips() -> None:
    plans = plan_slots(1, ["claude"], {1: PassedSlot(1, 2, "claude")})
    assert not plans[0].skip
    assert not plans[0].forced


def test_plan_slots_skips_passed_slot_when_another_runs() -> None:
    plans = plan_slots(2, ["claude"], {1: PassedSlot(1, 2, "claude")})

    assert plans[0].skip and plans[0].pass_iteration == 2
    assert not plans[1].skip


def test_plan_slots_safety_latch_forces_slot_one() -> None:
    passed = {1: PassedSlot(1, 1, "claude"), 2: PassedSlot(2, 3, "codex")}

    plans = plan_slots(2, ["claude", "codex"], passed)

    assert plans[0].forced and not plans[0].skip
    assert plans[1].skip and plans[1].pass_iteration == 3


def test_plan_slots_rejects_invalid_input() -> None:
    with pytest.raises(ValueError):
        plan_slots(0, ["claude"])
    with pytest.raises(ValueError):
        plan_slots(1, [])


@settings(max_examples=100, deadline=None)
@given(
    num_reviews=st.integers(min_value=1, max_value=6),
    adapter_count=st.integers(min_value=1, max_value=3),
    passed_indexes=st.sets(st.integers(min_value=1, max_value=6)),
)
def test_plan_slots_always_executes_at_least_one_slot(
    num_reviews: int, adapter_count: int, passed_indexes: set[int]
) -> None:
    adapters = ["claude", "codex", "gemini"][:adapter_count]
    passed = {index: PassedSlot(index, 1, "claude") for index in passed_indexes}

    plans = plan_slots(num_reviews, adapters, passed)

    assert len(plans) == num_reviews
    assert any(not plan.skip for plan in plans)
    for plan in plans:
        assert plan.adapter == adapters[(plan.review_index - 1) % adapter_count]
        if plan.skip:
            assert num_reviews > 1
            assert plan.review_index in passed


# ----------------------------------------------------------------------
# Gate execution
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_review_gate_pass_writes_artifacts(tmp_path: Path) -> None:
    adapter = FakeAdapter("claude")
    gate, artifacts = _gate(tmp_path, adapter)

    result = await gate.execute(_job(), run_number=1, diff=_DIFF, preference=["claude"])

    assert result.status is GateStatus.PASS
    key = ArtifactKey.for_review("review:.:code-quality", "claude", 1, 1)
    assert artifacts.read_review(key).status is ReviewStatus.PASS
    assert artifacts.path_for(key.with_suffix("log")).exists()
    request = adapter.requests[0]
    assert request.diff == _DIFF
    assert request.prompt.startswith("Find bugs.")
    assert request.cwd == str(tmp_path)


@pytest.mark.asyncio
async def test_review_gate_fail_keeps_only_in_scope_violations(tmp_path: Path) -> None:
    adapter = FakeAdapter(
        "claude",
        [
            _fail(
                {"file": "src/app.py", "line": 2, "issue": "KeyError", "priority": "high"},
                {"file": "src/app.py", "line": 1, "issue": "old", "priority": "low"},
            )
        ],
    )
    gate, artifacts = _gate(tmp_path, adapter)

    result = await gate.execute(_job(), run_number=1, diff=_DIFF, preference=["claude"])

    assert result.status is GateStatus.FAIL
    assert [item.issue for item in result.violations] == ["KeyError"]
    stored = artifacts.read_review(ArtifactKey.for_review(result.job_id, "claude", 1, 1))
    assert stored.status is ReviewStatus.FAIL
    assert len(stored.violations) == 1


@pytest.mark.asyncio
async def test_review_gate_all_out_of_scope_is_a_pass(tmp_path: Path) -> None:
    adapter = FakeAdapter(
        "claude", [_fail({"file": "other.py", "line": 9, "issue": "x", "priority": "high"})]
    )
    gate, _ = _gate(tmp_path, adapter)

    result = await gate.execute(_job(), run_number=1, diff=_DIFF, preference=["claude"])

    assert result.status is GateStatus.PASS


@pytest.mark.asyncio
async def test_review_gate_empty_diff_passes_without_invoking(tmp_path: Path) -> None:
    adapter = FakeAdapter("claude")
    gate, _ = _gate(tmp_path, adapter)

    result = await gate.execute(_job(), run_number=1, diff="  \n", preference=["claude"])

    assert result.status is GateStatus.PASS
    assert adapter.requests == []


@pytest.mark.asyncio
async def test_review_gate_without_healthy_adapters_errors(tmp_path: Path) -> None:
    gate, _ = _gate(tmp_path, FakeAdapter("claude", healthy=False))

    result = await gate.execute(_job(), run_number=1, diff=_DIFF, preference=["claude", "codex"])

    assert result.status is GateStatus.ERROR
    assert NO_HEALTHY_ADAPTERS_MESSAGE in result.message


@pytest.mark.asyncio
async def test_review_gate_unparseable_output_is_slot_error(tmp_path: Path) -> None:
    gate, artifacts = _gate(tmp_path, FakeAdapter("claude", ["I think it is fine."]))

    result = await gate.execute(_job(), run_number=1, diff=_DIFF, preference=["claude"])

    assert result.status is GateStatus.ERROR
    stored = artifacts.read_review(ArtifactKey.for_review(result.job_id, "claude", 1, 1))
    assert stored.status is ReviewStatus.ERROR
    assert stored.raw_output == "I think it is fine."
    assert stored.error is not None and stored.error.startswith("output_invalid")


@pytest.mark.asyncio
async def test_review_gate_timeout_is_slot_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(review_gate, "_TIMEOUT_GRACE_SECONDS", 0.0)
    gate, artifacts = _gate(tmp_path, FakeAdapter("claude", delay=30))

    result = await gate.execute(_job(timeout=0.2), run_number=1, diff=_DIFF, preference=["claude"])

    assert result.status is GateStatus.ERROR
    stored = artifacts.read_review(ArtifactKey.for_review(result.job_id, "claude", 1, 1))
    assert stored.error is not None and stored.error.startswith("timeout")


@pytest.mark.asyncio
async def test_review_gate_error_wins_over_failure(tmp_path: Path) -> None:
    failing = FakeAdapter(
        "claude", [_fail({"file": "src/app.py", "line": 2, "issue": "bug", "priority": "high"})]
    )
    broken = FakeAdapter("codex", ["not json"])
    gate, _ = _gate(tmp_path, failing, broken)

    result = await gate.execute(
        _job(num_reviews=2), run_number=1, diff=_DIFF, preference=["claude", "codex"]
    )

    assert result.status is GateStatus.ERROR
    assert result.message == "Error in 1 adapter(s)"


@pytest.mark.asyncio
async def test_review_slots_run_concurrently(tmp_path: Path) -> None:
    slow_a = FakeAdapter("claude", delay=0.3)
    slow_b = FakeAdapter("codex", delay=0.3)
    gate, _ = _gate(tmp_path, slow_a, slow_b)

    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await gate.execute(
        _job(num_reviews=2), run_number=1, diff=_DIFF, preference=["claude", "codex"]
    )

    assert result.status is GateStatus.PASS
    assert loop.time() - started < 0.55


@pytest.mark.asyncio
async def test_prior_pass_slot_is_skipped_and_recorded(tmp_path: Path) -> None:
    """Slot 1 passed in iteration 2 and slot 2 failed; iteration 3 only runs slot 2."""

    adapter = FakeAdapter("claude")
    gate, artifacts = _gate(tmp_path, adapter)
    prior = {2: (Violation(file="src/app.py", line=2, issue="KeyError", priority=Priority.HIGH),)}

    result = await gate.execute(
        _job(num_reviews=2),
        run_number=3,
        diff=_DIFF,
        preference=["claude"],
        prior_failures=prior,
        passed_slots={1: PassedSlot(1, 2, "claude")},
        verification=True,
    )

    assert len(adapter.requests) == 1
    assert "RERUN MODE" in adapter.requests[0].prompt
    assert result.status is GateStatus.PASS
    assert "1 skipped due to prior pass" in result.message

    skipped = artifacts.read_review(ArtifactKey.for_review(result.job_id, "claude", 1, 3))
    assert skipped.status is ReviewStatus.SKIPPED_PRIOR_PASS
    assert skipped.pass_iteration == 2

    state = recover(artifacts, logger=MagicMock())
    assert state.passed_slots_for(result.job_id)[1].pass_iteration == 2
    assert state.passed_slots_for(result.job_id)[2].pass_iteration == 3


@pytest.mark.asyncio
async def test_verification_discards_new_findings_below_threshold(tmp_path: Path) -> None:
    adapter = FakeAdapter(
        "claude",
        [_fail({"file": "src/app.py", "line": 3, "issue": "style", "priority": "medium"})],
    )
    gate, artifacts = _gate(tmp_path, adapter)
    prior = {1: (Violation(file="src/app.py", line=2, issue="KeyError", priority=Priority.HIGH),)}

    result = await gate.execute(
        _job(),
        run_number=2,
        diff=_DIFF,
        preference=["claude"],
        prior_failures=prior,
        verification=True,
    )

    assert result.status is GateStatus.PASS
    assert result.violations == ()
    log_text = artifacts.read_text(ArtifactKey.for_review(result.job_id, "claude", 1, 2, "log"))
    assert "filtered due to rerun threshold" in log_text


@pytest.mark.asyncio
async def test_without_verification_medium_findings_fail(tmp_path: Path) -> None:
    adapter = FakeAdapter(
        "claude",
        [_fail({"file": "src/app.py", "line": 3, "issue": "style", "priority": "medium"})],
    )
    gate, _ = _gate(tmp_path, adapter)

    result = await gate.execute(_job(), run_number=1, diff=_DIFF, preference=["claude"])

    assert result.status is GateStatus.FAIL
