"""
gauntlet-orchestrator — package root

File: src/gauntlet_orchestrator/__init__.py

Purpose
- Package root for the quality-gate orchestrator: diff-scoped checks and AI reviews
  run iteratively until an agent's changes converge.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
