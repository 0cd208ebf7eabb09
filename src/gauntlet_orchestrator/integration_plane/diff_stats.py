"""Summary statistics (file categories and line deltas) for the active diff mode."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from gauntlet_orchestrator.domain.models import DiffStats
from gauntlet_orchestrator.integration_plane.change_detector import (
    ChangeDetector,
    DiffMode,
    exclusion_pathspec,
)
from gauntlet_orchestrator.integration_plane.git_engine import GitCommandError

if TYPE_CHECKING:
    from collections.abc import Iterable

_NEW_CODES = frozenset({"A"})
_MODIFIED_CODES = frozenset({"M", "R", "C", "T"})
_DELETED_CODES = frozenset({"D"})


@dataclass(slots=True)
class _Tally:
    statuses: dict[str, str] = field(default_factory=dict)
    lines_added: int = 0
    lines_removed: int = 0

    def add_numstat(self, output: str) -> None:
        for added, removed in parse_numstat(output):
            self.lines_added += added
            self.lines_removed += removed

    def add_name_status(self, output: str) -> None:
        for code, path in parse_name_status(output):
            self.statuses.setdefault(path, code)

    def add_untracked(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.statuses.setdefault(path, "A")

    def to_stats(self, base_ref: str) -> DiffStats:
        codes = list(self.statuses.values())
        return DiffStats(
            base_ref=base_ref,
            files_total=len(codes),
            files_new=sum(1 for code in codes if code in _NEW_CODES),
            files_modified=sum(1 for code in codes if code in _MODIFIED_CODES),
            files_deleted=sum(1 for code in codes if code in _DELETED_CODES),
            lines_added=self.lines_added,
            lines_removed=self.lines_removed,
        )


def parse_numstat(output: str) -> list[tuple[int, int]]:
    """Parse ``git diff --numstat`` rows; binary files (``-``) are skipped."""

    rows: list[tuple[int, int]] = []
    for line in output.splitlines():
        columns = line.split("\t")
        if len(columns) < 3:
            continue
        added, removed = columns[0].strip(), columns[1].strip()
        if added == "-" or removed == "-":
            continue
        try:
            rows.append((int(added), int(removed)))
        except ValueError:
            continue
    return rows


def parse_name_status(output: str) -> list[tuple[str, str]]:
    """Parse ``git diff --name-status`` rows into ``(code, path)``; renames keep the new path."""

    rows: list[tuple[str, str]] = []
    for line in output.splitlines():
        columns = line.split("\t")
        if len(columns) < 2 or not columns[0]:
            continue
        code = columns[0][:1]
        rows.append((code, columns[-1].strip()))
    return rows


def compute_diff_stats(detector: ChangeDetector, *, logger: Any | None = None) -> DiffStats:
    """Compute :class:`DiffStats` for ``detector``'s mode.

    Version-control failures yield empty statistics; the numbers are informational
    and never block a run.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    git = detector.git
    spec = exclusion_pathspec(detector.exclude_paths)
    tally = _Tally()
    mode = detector.mode

    try:
        if mode is DiffMode.FIX_BASE:
            base_ref = detector.require_fix_base()
            refs: tuple[str, ...] = (base_ref, git.working_tree())
        elif mode is DiffMode.COMMIT:
            refs = detector.commit_range()
            base_ref = refs[0] if git.has_parent(refs[-1]) else "root"
        elif mode is DiffMode.UNCOMMITTED:
            refs = ("HEAD",)
            base_ref = "uncommitted"
        elif mode is DiffMode.CI:
            refs = detector.ci_range()
            base_ref = "HEAD^" if refs == ("HEAD^...HEAD",) else detector.base_branch
        else:
            refs = (detector.local_base(),)
            base_ref = detector.base_branch

        tally.add_numstat(git.diff("--numstat", *refs, *spec))
        tally.add_name_status(git.diff("--name-status", *refs, *spec))
        if mode in {DiffMode.UNCOMMITTED, DiffMode.LOCAL}:
            tally.add_untracked(detector.untracked_paths())
    except (GitCommandError, ValueError) as exc:
        log.warning("diff_stats_unavailable", mode=mode.value, error=str(exc))
        return DiffStats(base_ref=detector.options.commit or detector.base_branch)

    return tally.to_stats(base_ref)


__all__ = [
    "compute_diff_stats",
    "parse_name_status",
    "parse_numstat",
]
