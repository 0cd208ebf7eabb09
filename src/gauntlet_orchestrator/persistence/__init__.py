"""Artifact directory, execution state, and artifact-based recovery."""

from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory, ArtifactKey, JobLog
from gauntlet_orchestrator.persistence.execution_state import ExecutionStateStore
from gauntlet_orchestrator.persistence.recovery import (
    RecoveredState,
    reconstruct_history,
    recover,
)

__all__ = [
    "ArtifactDirectory",
    "ArtifactKey",
    "ExecutionStateStore",
    "JobLog",
    "RecoveredState",
    "reconstruct_history",
    "recover",
]
