"""Control plane: run controller and job scheduler."""

from gauntlet_orchestrator.control_plane.controller import (
    GauntletController,
    RunOptions,
    RunPlan,
    run,
)
from gauntlet_orchestrator.control_plane.scheduler import Runner, RunnerOutcome, RunnerStats

__all__ = [
    "GauntletController",
    "RunOptions",
    "RunPlan",
    "Runner",
    "RunnerOutcome",
    "RunnerStats",
    "run",
]
