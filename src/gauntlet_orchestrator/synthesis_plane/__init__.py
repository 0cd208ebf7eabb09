"""Synthesis plane: AI reviewer adapters behind a uniform capability interface."""

from gauntlet_orchestrator.synthesis_plane.reviewers import (
    ReviewerAdapter,
    ReviewerRegistry,
    build_default_registry,
)

__all__ = ["ReviewerAdapter", "ReviewerRegistry", "build_default_registry"]
