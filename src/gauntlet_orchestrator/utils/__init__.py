"""Filesystem and asyncio helpers."""

from gauntlet_orchestrator.utils.concurrency import CancellationToken, gather_all, run_with_timeout
from gauntlet_orchestrator.utils.fs import atomic_write, create_exclusive, move_into, safe_delete

__all__ = [
    "CancellationToken",
    "atomic_write",
    "create_exclusive",
    "gather_all",
    "move_into",
    "run_with_timeout",
    "safe_delete",
]
