"""
gauntlet-orchestrator — error taxonomy

File: src/gauntlet_orchestrator/domain/errors.py

Purpose
- Typed failures shared by the gates, the runner, and the CLI exit-code router.

Functional requirements
- Preflight failures are per-job and never abort a run on their own.
- Invocation failures (crash, timeout, non-zero exit, unparseable output) are hard
  per-slot or per-job failures; nothing is partially accepted.
- A lock conflict aborts the invocation before any other side effect.
"""

from __future__ import annotations


def _normalize_detail(detail: str) -> str:
    normalized = " ".join(str(detail).split())
    return normalized or "unspecified failure"


class GauntletError(RuntimeError):
    """Base class for orchestrator failures."""


class PreflightFailure(GauntletError):
    """Raised when a job cannot start (missing command, no healthy reviewer)."""

    def __init__(self, job_id: str, detail: str) -> None:
        self.job_id = job_id
        self.detail = _normalize_detail(detail)
        super().__init__(f"preflight failed for {job_id}: {self.detail}")


class InvocationError(GauntletError):
    """External process failure with deterministic machine-readable fields."""

    def __init__(self, detail: str, *, source: str, code: str = "invocation_failed") -> None:
        self.source = source
        self.code = code
        self.detail = _normalize_detail(detail)
        super().__init__(f"source={source} code={code} detail={self.detail}")


class ReviewerTimeoutError(InvocationError):
    def __init__(self, detail: str, *, source: str) -> None:
        super().__init__(detail, source=source, code="timeout")


class ReviewerUsageLimitError(InvocationError):
    """Reviewer tool reported an exhausted quota or usage limit."""

    def __init__(self, detail: str, *, source: str) -> None:
        super().__init__(detail, source=source, code="usage_limit")


class ReviewOutputError(InvocationError):
    """Reviewer output is not the expected JSON document."""

    def __init__(self, detail: str, *, source: str = "reviewer") -> None:
        super().__init__(detail, source=source, code="output_invalid")


class LockConflictError(GauntletError):
    """Another invocation holds the artifact-directory lock."""

    def __init__(self, lock_path: str, owner: str | None = None) -> None:
        self.lock_path = lock_path
        self.owner = owner
        message = f"another run is in progress (lock file: {lock_path})"
        if owner:
            message = f"{message}, owner pid {owner}"
        super().__init__(message)


__all__ = [
    "GauntletError",
    "InvocationError",
    "LockConflictError",
    "PreflightFailure",
    "ReviewOutputError",
    "ReviewerTimeoutError",
    "ReviewerUsageLimitError",
]
