"""UI package exports for the CLI and plain-text rendering."""

from gauntlet_orchestrator.ui.cli import build_parser, main, run_cli
from gauntlet_orchestrator.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "build_parser", "create_renderer", "main", "run_cli"]
