"""Integration plane: git access, change detection, and diff scoping."""

from gauntlet_orchestrator.integration_plane.change_detector import (
    ChangeDetector,
    ChangeOptions,
    DiffMode,
)
from gauntlet_orchestrator.integration_plane.diff_scope import (
    is_valid_violation_location,
    parse_diff,
)
from gauntlet_orchestrator.integration_plane.diff_stats import compute_diff_stats
from gauntlet_orchestrator.integration_plane.git_engine import (
    GitCommandError,
    GitEngine,
    GitEngineError,
)

__all__ = [
    "ChangeDetector",
    "ChangeOptions",
    "DiffMode",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "compute_diff_stats",
    "is_valid_violation_location",
    "parse_diff",
]
