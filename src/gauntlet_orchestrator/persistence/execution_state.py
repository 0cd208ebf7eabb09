"""
gauntlet-orchestrator — execution state and fix-base resolution

File: src/gauntlet_orchestrator/persistence/execution_state.py

Purpose
- Persist the branch, commit and working-tree snapshot at the end of every invocation.
- Resolve the diff anchor ("fix base") for the next fresh run.
- Detect stale state (branch switch or merged work) and archive it.

Functional requirements
- Resolution order: merged commit -> no anchor; live snapshot -> snapshot;
  collected snapshot with live commit -> commit plus a warning; otherwise no anchor.
- Version-control failures while resolving degrade to "no anchor", never raise.
- Writing removes the legacy ``.session_ref`` record.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

import structlog

from gauntlet_orchestrator.constants import LEGACY_SESSION_REF_FILENAME
from gauntlet_orchestrator.domain.models import ExecutionState, utc_timestamp
from gauntlet_orchestrator.integration_plane.git_engine import GitEngineError
from gauntlet_orchestrator.utils.fs import atomic_write

if TYPE_CHECKING:
    from gauntlet_orchestrator.integration_plane.git_engine import GitEngine
    from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory

SNAPSHOT_COLLECTED_WARNING: Final[str] = (
    "Session stash was garbage collected, using commit as fallback"
)


class AutoCleanReason(StrEnum):
    BRANCH_CHANGED = "branch_changed"
    COMMIT_MERGED = "commit_merged"


@dataclass(frozen=True, slots=True)
class FixBaseResolution:
    fix_base: str | None
    warning: str | None = None


class ExecutionStateStore:
    """Read, write, and interpret the execution-state record of one artifact directory."""

    def __init__(
        self,
        artifacts: ArtifactDirectory,
        git: GitEngine,
        *,
        logger: Any | None = None,
    ) -> None:
        self._artifacts = artifacts
        self._git = git
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def read(self) -> ExecutionState | None:
        """Return the recorded state, or ``None`` when absent or unreadable."""

        path = self._artifacts.state_path
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.warning("execution_state_unreadable", path=str(path), error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return ExecutionState.from_dict(payload)
        except ValueError as exc:
            self._logger.warning("execution_state_invalid", path=str(path), error=str(exc))
            return None

    def capture(self) -> ExecutionState:
        return ExecutionState(
            last_run_completed_at=utc_timestamp(),
            branch=self._git.current_branch(),
            commit=self._git.head_commit(),
            working_tree_ref=self._git.snapshot_working_tree(),
        )

    def write(self, state: ExecutionState | None = None) -> ExecutionState:
        record = state if state is not None else self.capture()
        self._artifacts.root.mkdir(parents=True, exist_ok=True)
        atomic_write(
            self._artifacts.state_path,
            json.dumps(record.to_dict(), indent=2) + "\n",
        )
        (self._artifacts.root / LEGACY_SESSION_REF_FILENAME).unlink(missing_ok=True)
        return record

    def delete(self) -> None:
        self._artifacts.state_path.unlink(missing_ok=True)

    def resolve_fix_base(self, state: ExecutionState, base_branch: str) -> FixBaseResolution:
        try:
            if self._git.is_ancestor(state.commit, base_branch):
                self._logger.info("fix_base_stale", commit=state.commit, base_branch=base_branch)
                return FixBaseResolution(fix_base=None)
            if state.working_tree_ref and self._git.object_exists(state.working_tree_ref):
                return FixBaseResolution(fix_base=state.working_tree_ref)
            if self._git.object_exists(state.commit):
                self._logger.warning(
                    "fix_base_degraded_to_commit",
                    working_tree_ref=state.working_tree_ref,
                    commit=state.commit,
                )
                return FixBaseResolution(fix_base=state.commit, warning=SNAPSHOT_COLLECTED_WARNING)
        except GitEngineError as exc:
            self._logger.warning("fix_base_resolution_failed", error=str(exc))
        return FixBaseResolution(fix_base=None)

    def auto_clean_reason(self, base_branch: str) -> AutoCleanReason | None:
        """Why existing artifacts are stale for a fresh run, or ``None`` if they are not."""

        state = self.read()
        if state is None:
            return None
        try:
            if self._git.current_branch() != state.branch:
                return AutoCleanReason.BRANCH_CHANGED
            if self._git.is_ancestor(state.commit, base_branch):
                return AutoCleanReason.COMMIT_MERGED
        except GitEngineError as exc:
            self._logger.warning("auto_clean_check_failed", error=str(exc))
        return None

    def perform_auto_clean(self, reason: AutoCleanReason) -> int:
        moved = self._artifacts.clean()
        self.delete()
        self._logger.info("auto_clean", reason=reason.value, archived=moved)
        return moved


__all__ = [
    "SNAPSHOT_COLLECTED_WARNING",
    "AutoCleanReason",
    "ExecutionStateStore",
    "FixBaseResolution",
]
