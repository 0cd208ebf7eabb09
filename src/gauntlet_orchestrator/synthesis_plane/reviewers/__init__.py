"""Reviewer capability interface, registry, and CLI-tool implementations."""

from gauntlet_orchestrator.synthesis_plane.reviewers.base import (
    HealthState,
    HealthStatus,
    ReviewerAdapter,
    ReviewerRegistry,
    ReviewRequest,
)
from gauntlet_orchestrator.synthesis_plane.reviewers.tool_adapter import (
    REVIEWER_TYPES,
    CLIReviewer,
    build_default_registry,
)

__all__ = [
    "REVIEWER_TYPES",
    "CLIReviewer",
    "HealthState",
    "HealthStatus",
    "ReviewRequest",
    "ReviewerAdapter",
    "ReviewerRegistry",
    "build_default_registry",
]
