"""
gauntlet-orchestrator — artifact-based state recovery

File: src/gauntlet_orchestrator/persistence/recovery.py

Purpose
- Rebuild, purely from numbered artifacts, the unresolved violations and the
  already-passed review slots of the previous iteration.
- Reconstruct per-iteration history (what got fixed, what got skipped).

Functional requirements
- Artifacts are grouped by ``(job, slot)``; only the highest run number of each
  group is interpreted, earlier iterations are superseded.
- A failed review carries forward every violation whose status is not ``skipped``.
- A passed (or skipped-after-pass) review yields a ``PassedSlot``.
- A slot with no artifact, or whose latest artifact is an error, is neither failed
  nor passed: it must run.
- Check gates are recovered from their ``.log`` text.
"""

from __future__ import annotations

import json
import re
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

import structlog

from gauntlet_orchestrator.domain.models import (
    PassedSlot,
    ReviewArtifact,
    ReviewStatus,
    Violation,
    ViolationStatus,
)
from gauntlet_orchestrator.persistence.artifacts import ArtifactKey, sanitize_job_id

if TYPE_CHECKING:
    from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory

SlotKey = tuple[str, int | None]

_CHECK_RESULT_RE: Final[re.Pattern[str]] = re.compile(r"Result: (\w+)")
_CHECK_FAILED_RESULTS: Final[frozenset[str]] = frozenset({"fail", "error"})
_COMMAND_FAILED_MARKER: Final[str] = "Command failed:"
_KNOWN_VIOLATION_STATUSES: Final[frozenset[str]] = frozenset(item.value for item in ViolationStatus)
_MISSING_VIOLATIONS_ISSUE: Final[str] = "Previous run failed but no violations found in JSON"


@dataclass(frozen=True, slots=True)
class SkippedFinding:
    """A violation the fixing agent chose not to address."""

    job_prefix: str
    adapter: str
    violation: Violation


@dataclass(frozen=True, slots=True)
class RecoveredState:
    """Everything the next iteration needs to know about the previous one.

    Keys of every mapping are sanitized job ids (artifact filename prefixes).
    """

    failures_by_job: Mapping[str, Mapping[int, tuple[Violation, ...]]] = field(default_factory=dict)
    passed_slots_by_job: Mapping[str, Mapping[int, PassedSlot]] = field(default_factory=dict)
    failed_checks: Mapping[str, str] = field(default_factory=dict)
    skipped: tuple[SkippedFinding, ...] = ()

    @property
    def has_failures(self) -> bool:
        return bool(self.failures_by_job) or bool(self.failed_checks)

    @property
    def violation_count(self) -> int:
        return sum(
            len(violations)
            for slots in self.failures_by_job.values()
            for violations in slots.values()
        ) + len(self.failed_checks)

    def failures_for(self, job_id: str) -> Mapping[int, tuple[Violation, ...]]:
        return self.failures_by_job.get(sanitize_job_id(job_id), {})

    def passed_slots_for(self, job_id: str) -> Mapping[int, PassedSlot]:
        return self.passed_slots_by_job.get(sanitize_job_id(job_id), {})

    def prior_violations(self) -> tuple[Violation, ...]:
        return tuple(
            violation
            for slots in self.failures_by_job.values()
            for violations in slots.values()
            for violation in violations
        )


@dataclass(frozen=True, slots=True)
class FixedItem:
    job_prefix: str
    details: str
    adapter: str | None = None


@dataclass(frozen=True, slots=True)
class RunIteration:
    iteration: int
    fixed: tuple[FixedItem, ...] = ()
    skipped: tuple[SkippedFinding, ...] = ()


def latest_by_slot(
    listing: Iterable[ArtifactKey],
    gate_filter: str | None = None,
) -> dict[SlotKey, ArtifactKey]:
    """Select the newest artifact per ``(prefix, slot)``; JSON wins over log at equal run."""

    needle = sanitize_job_id(gate_filter) if gate_filter else None
    selected: dict[SlotKey, ArtifactKey] = {}
    for key in listing:
        if needle is not None and needle not in key.filename:
            continue
        slot: SlotKey = (key.prefix, key.slot_index)
        current = selected.get(slot)
        if current is None or _supersedes(key, current):
            selected[slot] = key
    return selected


def interpret_review(
    key: ArtifactKey,
    artifact: ReviewArtifact,
) -> tuple[tuple[Violation, ...] | None, PassedSlot | None, tuple[SkippedFinding, ...]]:
    """Classify one latest review artifact as failure, passed slot, or neither."""

    adapter = key.adapter or artifact.adapter
    skipped = tuple(
        SkippedFinding(job_prefix=key.prefix, adapter=adapter, violation=item)
        for item in artifact.violations
        if item.status is ViolationStatus.SKIPPED
    )
    slot_index = key.slot_index or 1

    if artifact.status is ReviewStatus.PASS:
        return None, PassedSlot(slot_index, key.run_number, adapter), skipped
    if artifact.status is ReviewStatus.SKIPPED_PRIOR_PASS:
        pass_iteration = artifact.pass_iteration or key.run_number
        return None, PassedSlot(slot_index, pass_iteration, adapter), skipped
    if artifact.status is ReviewStatus.FAIL:
        carried = tuple(
            item for item in artifact.violations if item.status is not ViolationStatus.SKIPPED
        )
        if not artifact.violations:
            carried = (Violation(file="unknown", line="?", issue=_MISSING_VIOLATIONS_ISSUE),)
        return (carried or None), None, skipped
    return None, None, skipped


def check_log_failed(text: str) -> bool:
    """Classify a check log by its last ``Result:`` line, which the gate writes last."""

    results = _CHECK_RESULT_RE.findall(text)
    if results:
        return results[-1] in _CHECK_FAILED_RESULTS
    return _COMMAND_FAILED_MARKER in text


def recover(
    directory: ArtifactDirectory,
    gate_filter: str | None = None,
    *,
    logger: Any | None = None,
) -> RecoveredState:
    """Rebuild :class:`RecoveredState` from ``directory``'s current artifacts."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    failures: dict[str, dict[int, tuple[Violation, ...]]] = defaultdict(dict)
    passed: dict[str, dict[int, PassedSlot]] = defaultdict(dict)
    failed_checks: dict[str, str] = {}
    skipped: list[SkippedFinding] = []

    for (prefix, slot_index), key in sorted(
        latest_by_slot(directory.listing(), gate_filter).items(),
        key=lambda item: (item[0][0], item[0][1] or 0),
    ):
        if slot_index is None:
            if key.suffix == "log" and check_log_failed(_read_text(directory, key, log)):
                failed_checks[prefix] = key.filename
            continue

        artifact = _load_review(directory, key, log)
        if artifact is None:
            continue
        carried, passed_slot, slot_skipped = interpret_review(key, artifact)
        skipped.extend(slot_skipped)
        if carried is not None:
            failures[prefix][slot_index] = carried
        if passed_slot is not None:
            passed[prefix][slot_index] = passed_slot

    state = RecoveredState(
        failures_by_job={job: dict(slots) for job, slots in failures.items()},
        passed_slots_by_job={job: dict(slots) for job, slots in passed.items()},
        failed_checks=failed_checks,
        skipped=tuple(skipped),
    )
    log.info(
        "recovery_complete",
        failed_jobs=len(state.failures_by_job) + len(state.failed_checks),
        violations=state.violation_count,
        passed_slots=sum(len(slots) for slots in state.passed_slots_by_job.values()),
        skipped=len(state.skipped),
    )
    return state


def reconstruct_history(
    directory: ArtifactDirectory, *, logger: Any | None = None
) -> list[RunIteration]:
    """Per run number, what was resolved since the previous run and what was skipped."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    by_run: dict[int, dict[SlotKey, ArtifactKey]] = defaultdict(dict)
    for key in directory.listing():
        slot: SlotKey = (key.prefix, key.slot_index)
        current = by_run[key.run_number].get(slot)
        if current is None or _supersedes(key, current):
            by_run[key.run_number][slot] = key

    iterations: list[RunIteration] = []
    previous: dict[SlotKey, tuple[tuple[str, Violation], ...]] = {}
    for run_number in sorted(by_run):
        current: dict[SlotKey, tuple[tuple[str, Violation], ...]] = {}
        skipped: list[SkippedFinding] = []
        for slot, key in sorted(by_run[run_number].items(), key=lambda item: item[1].filename):
            if slot[1] is None:
                if key.suffix == "log" and check_log_failed(_read_text(directory, key, log)):
                    marker = Violation(file=key.filename, line=None, issue="Check failed")
                    current[slot] = (("check", marker),)
                continue
            artifact = _load_review(directory, key, log)
            if artifact is None:
                continue
            adapter = key.adapter or artifact.adapter
            carried, _, slot_skipped = interpret_review(key, artifact)
            skipped.extend(slot_skipped)
            if carried:
                current[slot] = tuple((adapter, item) for item in carried)

        fixed: list[FixedItem] = []
        for slot, prior in previous.items():
            now = current.get(slot, ())
            resolved = [
                (adapter, item)
                for adapter, item in prior
                if not any(_same_finding(item, other) for _, other in now)
            ]
            if not resolved:
                continue
            if slot[1] is None:
                fixed.append(FixedItem(job_prefix=slot[0], details="check passed"))
                continue
            for adapter, item in resolved:
                fixed.append(
                    FixedItem(
                        job_prefix=slot[0],
                        adapter=adapter,
                        details=f"{item.file}:{item.line} {item.issue}",
                    )
                )

        iterations.append(RunIteration(run_number, tuple(fixed), tuple(skipped)))
        previous = current
    return iterations


def _supersedes(candidate: ArtifactKey, current: ArtifactKey) -> bool:
    if candidate.run_number != current.run_number:
        return candidate.run_number > current.run_number
    return candidate.suffix == "json" and current.suffix != "json"


def _same_finding(left: Violation, right: Violation) -> bool:
    return left.file == right.file and left.line == right.line and left.issue == right.issue


def _read_text(directory: ArtifactDirectory, key: ArtifactKey, log: Any) -> str:
    try:
        return directory.read_text(key)
    except OSError as exc:
        log.warning("artifact_unreadable", artifact=key.filename, error=str(exc))
        return ""


def _load_review(directory: ArtifactDirectory, key: ArtifactKey, log: Any) -> ReviewArtifact | None:
    if key.suffix != "json":
        return None
    path = directory.path_for(key)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        log.warning("review_artifact_unreadable", artifact=key.filename, error=str(exc))
        return None
    if isinstance(payload, dict):
        _normalize_violation_statuses(payload, key, log)
    try:
        return ReviewArtifact.from_dict(payload)
    except ValueError as exc:
        log.warning("review_artifact_invalid", artifact=key.filename, error=str(exc))
        return None


def _normalize_violation_statuses(payload: dict[str, object], key: ArtifactKey, log: Any) -> None:
    # Fixing agents edit statuses by hand; anything unrecognized is treated as new.
    violations = payload.get("violations")
    if not isinstance(violations, list):
        return
    for item in violations:
        if not isinstance(item, dict):
            continue
        status = item.get("status")
        if status is None:
            continue
        if not isinstance(status, str) or status.strip().lower() not in _KNOWN_VIOLATION_STATUSES:
            log.warning("violation_status_unrecognized", artifact=key.filename, status=status)
            item["status"] = ViolationStatus.NEW.value


__all__ = [
    "FixedItem",
    "RecoveredState",
    "RunIteration",
    "SkippedFinding",
    "check_log_failed",
    "interpret_review",
    "latest_by_slot",
    "reconstruct_history",
    "recover",
]
