"""Domain records and the exception hierarchy shared by every plane."""

from gauntlet_orchestrator.domain.errors import (
    GauntletError,
    InvocationError,
    LockConflictError,
    PreflightFailure,
    ReviewerTimeoutError,
    ReviewerUsageLimitError,
    ReviewOutputError,
)
from gauntlet_orchestrator.domain.models import (
    DiffStats,
    ExecutionState,
    GateResult,
    GateStatus,
    Job,
    JobKind,
    PassedSlot,
    Priority,
    ReviewArtifact,
    ReviewStatus,
    RunOutcome,
    RunStatus,
    Violation,
    ViolationStatus,
)

__all__ = [
    "DiffStats",
    "ExecutionState",
    "GateResult",
    "GateStatus",
    "GauntletError",
    "InvocationError",
    "Job",
    "JobKind",
    "LockConflictError",
    "PassedSlot",
    "PreflightFailure",
    "Priority",
    "ReviewArtifact",
    "ReviewOutputError",
    "ReviewStatus",
    "ReviewerTimeoutError",
    "ReviewerUsageLimitError",
    "RunOutcome",
    "RunStatus",
    "Violation",
    "ViolationStatus",
]
