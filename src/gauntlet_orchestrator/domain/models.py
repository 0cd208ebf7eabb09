"""Dataclass domain models for gate runs, review artifacts, and run outcomes."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, NoReturn, TypeVar

from gauntlet_orchestrator.constants import PRIORITY_ORDER

if TYPE_CHECKING:
    from gauntlet_orchestrator.config.schema import CheckGateConfig, ReviewGateConfig

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_DIGITS_RE = re.compile(r"^\d+$")

TEnum = TypeVar("TEnum", bound=StrEnum)


class JobKind(StrEnum):
    CHECK = "check"
    REVIEW = "review"


class GateStatus(StrEnum):
    """Outcome of one job execution."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


class Priority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Zero for the most severe priority."""

        return PRIORITY_ORDER.index(self.value)

    def at_least(self, threshold: Priority) -> bool:
        return self.rank <= threshold.rank


class ViolationStatus(StrEnum):
    NEW = "new"
    FIXED = "fixed"
    SKIPPED = "skipped"


class ReviewStatus(StrEnum):
    """Status values persisted in review artifact JSON."""

    PASS = "pass"
    FAIL = "fail"
    SKIPPED_PRIOR_PASS = "skipped_prior_pass"
    ERROR = "error"


class RunStatus(StrEnum):
    """Terminal status of one invocation."""

    PASSED = "passed"
    PASSED_WITH_WARNINGS = "passed_with_warnings"
    NO_APPLICABLE_GATES = "no_applicable_gates"
    NO_CHANGES = "no_changes"
    FAILED = "failed"
    RETRY_LIMIT_EXCEEDED = "retry_limit_exceeded"
    LOCK_CONFLICT = "lock_conflict"
    ERROR = "error"

    @property
    def is_success(self) -> bool:
        return self in _SUCCESS_RUN_STATUSES


_SUCCESS_RUN_STATUSES = frozenset(
    {
        RunStatus.PASSED,
        RunStatus.PASSED_WITH_WARNINGS,
        RunStatus.NO_APPLICABLE_GATES,
        RunStatus.NO_CHANGES,
    }
)


@dataclass(frozen=True, slots=True)
class Violation:
    """One reviewer finding anchored to a file and line."""

    file: str
    line: int | str | None
    issue: str
    priority: Priority | None = None
    fix: str | None = None
    status: ViolationStatus = ViolationStatus.NEW
    result: str | None = None

    @property
    def line_number(self) -> int | None:
        """Integer line, coercing digit-only strings."""

        return coerce_line_number(self.line)

    def with_status(self, status: ViolationStatus) -> Violation:
        return Violation(
            file=self.file,
            line=self.line,
            issue=self.issue,
            priority=self.priority,
            fix=self.fix,
            status=status,
            result=self.result,
        )

    def matches(self, other: Violation) -> bool:
        """Whether ``other`` reports the same finding: same file, line and issue text."""

        return (
            self.file == other.file
            and self.line_number == other.line_number
            and _normalize_issue(self.issue) == _normalize_issue(other.issue)
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], *, path: str = "violation") -> Violation:
        if not isinstance(payload, Mapping):
            _fail(path, f"expected object, got {type(payload).__name__}")
        file_value = payload.get("file")
        if not isinstance(file_value, str) or not file_value.strip():
            _fail(f"{path}.file", "must be a non-empty string")
        line_value = payload.get("line")
        if line_value is not None and (
            isinstance(line_value, bool) or not isinstance(line_value, (int, str))
        ):
            _fail(f"{path}.line", f"expected integer or string, got {type(line_value).__name__}")
        issue_value = payload.get("issue")
        if not isinstance(issue_value, str):
            _fail(f"{path}.issue", "must be a string")
        return cls(
            file=file_value.strip(),
            line=line_value,
            issue=issue_value,
            priority=_optional_enum(Priority, payload.get("priority"), f"{path}.priority"),
            fix=_optional_str(payload.get("fix"), f"{path}.fix"),
            status=_optional_enum(ViolationStatus, payload.get("status"), f"{path}.status")
            or ViolationStatus.NEW,
            result=_optional_str(payload.get("result"), f"{path}.result"),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "file": self.file,
            "line": self.line,
            "issue": self.issue,
        }
        if self.priority is not None:
            out["priority"] = self.priority.value
        if self.fix is not None:
            out["fix"] = self.fix
        out["status"] = self.status.value
        if self.result is not None:
            out["result"] = self.result
        return out


@dataclass(frozen=True, slots=True)
class ReviewArtifact:
    """Per-slot, per-iteration review result persisted as JSON."""

    adapter: str
    timestamp: str
    status: ReviewStatus
    raw_output: str = ""
    violations: tuple[Violation, ...] = ()
    pass_iteration: int | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> ReviewArtifact:
        if not isinstance(payload, Mapping):
            _fail("ReviewArtifact", f"expected object, got {type(payload).__name__}")
        adapter = payload.get("adapter")
        if not isinstance(adapter, str):
            _fail("ReviewArtifact.adapter", "must be a string")
        status = _optional_enum(ReviewStatus, payload.get("status"), "ReviewArtifact.status")
        if status is None:
            _fail("ReviewArtifact.status", "is required")
        raw_violations = payload.get("violations", [])
        if not isinstance(raw_violations, list):
            _fail("ReviewArtifact.violations", "must be a list")
        pass_iteration = payload.get("passIteration")
        if pass_iteration is not None and (
            isinstance(pass_iteration, bool) or not isinstance(pass_iteration, int)
        ):
            _fail("ReviewArtifact.passIteration", "must be an integer")
        timestamp = payload.get("timestamp")
        raw_output = payload.get("rawOutput", "")
        return cls(
            adapter=adapter,
            timestamp=timestamp if isinstance(timestamp, str) else "",
            status=status,
            raw_output=raw_output if isinstance(raw_output, str) else "",
            violations=tuple(
                Violation.from_dict(item, path=f"ReviewArtifact.violations[{index}]")
                for index, item in enumerate(raw_violations)
            ),
            pass_iteration=pass_iteration,
            error=_optional_str(payload.get("error"), "ReviewArtifact.error"),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "adapter": self.adapter,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "rawOutput": self.raw_output,
            "violations": [item.to_dict() for item in self.violations],
        }
        if self.pass_iteration is not None:
            out["passIteration"] = self.pass_iteration
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True, slots=True)
class PassedSlot:
    review_index: int
    pass_iteration: int
    adapter: str


@dataclass(frozen=True, slots=True)
class Job:
    """One gate bound to one entry point for the current invocation."""

    id: str
    kind: JobKind
    name: str
    entry_point: str
    working_directory: str
    gate_config: CheckGateConfig | ReviewGateConfig

    @property
    def parallel(self) -> bool:
        return bool(self.gate_config.parallel)

    @property
    def fail_fast(self) -> bool:
        return self.kind is JobKind.CHECK and bool(getattr(self.gate_config, "fail_fast", False))


@dataclass(frozen=True, slots=True)
class GateResult:
    """Result of exactly one job execution."""

    job_id: str
    status: GateStatus
    duration_ms: int
    message: str = ""
    artifact_paths: tuple[str, ...] = ()
    violations: tuple[Violation, ...] = ()

    @property
    def passed(self) -> bool:
        return self.status is GateStatus.PASS

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "message": self.message,
            "artifact_paths": list(self.artifact_paths),
            "violations": [item.to_dict() for item in self.violations],
        }


@dataclass(frozen=True, slots=True)
class ExecutionState:
    """Snapshot persisted at the end of every invocation."""

    last_run_completed_at: str
    branch: str
    commit: str
    working_tree_ref: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> ExecutionState:
        values: dict[str, str] = {}
        for key in ("last_run_completed_at", "branch", "commit"):
            item = payload.get(key)
            if not isinstance(item, str) or not item:
                _fail(f"ExecutionState.{key}", "must be a non-empty string")
            values[key] = item
        return cls(
            last_run_completed_at=values["last_run_completed_at"],
            branch=values["branch"],
            commit=values["commit"],
            working_tree_ref=_optional_str(
                payload.get("working_tree_ref"), "ExecutionState.working_tree_ref"
            ),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "last_run_completed_at": self.last_run_completed_at,
            "branch": self.branch,
            "commit": self.commit,
        }
        if self.working_tree_ref is not None:
            out["working_tree_ref"] = self.working_tree_ref
        return out


@dataclass(frozen=True, slots=True)
class DiffStats:
    base_ref: str
    files_total: int = 0
    files_new: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    lines_added: int = 0
    lines_removed: int = 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "base_ref": self.base_ref,
            "files_total": self.files_total,
            "files_new": self.files_new,
            "files_modified": self.files_modified,
            "files_deleted": self.files_deleted,
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
        }


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Terminal aggregate of one invocation."""

    status: RunStatus
    fixed_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    retry_limit_exceeded: bool = False
    message: str | None = None
    run_number: int | None = None
    results: tuple[GateResult, ...] = field(default_factory=tuple)
    diff_stats: DiffStats | None = None
    config_error: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "status": self.status.value,
            "fixed_count": self.fixed_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "retry_limit_exceeded": self.retry_limit_exceeded,
            "message": self.message,
            "run_number": self.run_number,
            "results": [item.to_dict() for item in self.results],
            "diff_stats": self.diff_stats.to_dict() if self.diff_stats is not None else None,
            "config_error": self.config_error,
        }


def coerce_line_number(value: object) -> int | None:
    """Return an integer line for ints and digit-only strings, else ``None``."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if _DIGITS_RE.match(stripped):
            return int(stripped)
    return None


def utc_timestamp(now: datetime | None = None) -> str:
    moment = now if now is not None else datetime.now(tz=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _normalize_issue(text: str) -> str:
    return " ".join(text.lower().split())


def _optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _optional_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum | None:
    if value is None:
        return None
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        allowed = ", ".join(item.value for item in enum_type)
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "DiffStats",
    "ExecutionState",
    "GateResult",
    "GateStatus",
    "JSONScalar",
    "JSONValue",
    "Job",
    "JobKind",
    "PassedSlot",
    "Priority",
    "ReviewArtifact",
    "ReviewStatus",
    "RunOutcome",
    "RunStatus",
    "Violation",
    "ViolationStatus",
    "coerce_line_number",
    "utc_timestamp",
]
