"""Verification plane: check gates, review gates, and the reviewer output contract."""

from gauntlet_orchestrator.verification_plane.check_gate import CheckGate, preflight_check
from gauntlet_orchestrator.verification_plane.command import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
)
from gauntlet_orchestrator.verification_plane.review_gate import ReviewGate, plan_slots
from gauntlet_orchestrator.verification_plane.review_output import (
    filter_violations,
    parse_review_output,
)

__all__ = [
    "CheckGate",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "ReviewGate",
    "filter_violations",
    "parse_review_output",
    "plan_slots",
    "preflight_check",
]
