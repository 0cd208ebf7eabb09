"""Entry-point expansion and job generation."""

from gauntlet_orchestrator.planning.entry_points import ExpandedEntryPoint, expand_entry_points
from gauntlet_orchestrator.planning.jobs import filter_jobs, generate_jobs

__all__ = ["ExpandedEntryPoint", "expand_entry_points", "filter_jobs", "generate_jobs"]
