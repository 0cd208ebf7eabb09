"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Project layout.
GAUNTLET_DIR: Final[str] = ".gauntlet"
CONFIG_FILENAME: Final[str] = "config.yml"
CHECKS_DIRNAME: Final[str] = "checks"
REVIEWS_DIRNAME: Final[str] = "reviews"

# Artifact directory contents.
DEFAULT_LOG_DIR: Final[str] = "gauntlet_logs"
PREVIOUS_LOGS_DIRNAME: Final[str] = "previous"
LOCK_FILENAME: Final[str] = ".gauntlet-run.lock"
EXECUTION_STATE_FILENAME: Final[str] = ".execution_state"
LEGACY_SESSION_REF_FILENAME: Final[str] = ".session_ref"
ARTIFACT_SUFFIXES: Final[tuple[str, ...]] = (".log", ".json")

# Project defaults.
DEFAULT_BASE_BRANCH: Final[str] = "origin/main"
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_NUM_REVIEWS: Final[int] = 1
DEFAULT_REVIEWER_PREFERENCE: Final[tuple[str, ...]] = ("claude", "codex", "gemini")

# Violation priorities, most severe first.
PRIORITY_ORDER: Final[tuple[str, ...]] = ("critical", "high", "medium", "low")
PRIORITY_WEIGHT: Final[dict[str, int]] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}
DEFAULT_RERUN_THRESHOLD: Final[str] = "high"

# Timeouts (seconds).
DEFAULT_CHECK_TIMEOUT_SECONDS: Final[float] = 600.0
DEFAULT_REVIEW_TIMEOUT_SECONDS: Final[float] = 600.0
HEALTH_CHECK_TIMEOUT_SECONDS: Final[float] = 15.0

__all__ = [
    "ARTIFACT_SUFFIXES",
    "CHECKS_DIRNAME",
    "CONFIG_FILENAME",
    "DEFAULT_BASE_BRANCH",
    "DEFAULT_CHECK_TIMEOUT_SECONDS",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_NUM_REVIEWS",
    "DEFAULT_RERUN_THRESHOLD",
    "DEFAULT_REVIEWER_PREFERENCE",
    "DEFAULT_REVIEW_TIMEOUT_SECONDS",
    "EXECUTION_STATE_FILENAME",
    "GAUNTLET_DIR",
    "HEALTH_CHECK_TIMEOUT_SECONDS",
    "LEGACY_SESSION_REF_FILENAME",
    "LOCK_FILENAME",
    "PREVIOUS_LOGS_DIRNAME",
    "PRIORITY_ORDER",
    "PRIORITY_WEIGHT",
    "REVIEWS_DIRNAME",
]
