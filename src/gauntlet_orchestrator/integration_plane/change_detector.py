"""
gauntlet-orchestrator — change detection

File: src/gauntlet_orchestrator/integration_plane/change_detector.py

Purpose
- Resolve which diff mode applies to an invocation and list the files it changes.
- Produce the unified diff text a reviewer sees for one entry point.

Modes
- ``commit``: a single commit against its parent (root commits diff against the empty tree).
- ``uncommitted``: working tree (staged + unstaged) against HEAD, plus untracked files.
- ``ci``: ``<base>...<GITHUB_SHA|HEAD>``, falling back to ``HEAD^...HEAD``.
- ``local``: merge-base of the base branch against the working tree, plus untracked files.
- ``fix_base``: a recorded snapshot tree against the current working tree.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, Final

import structlog

from gauntlet_orchestrator.integration_plane.git_engine import GitCommandError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gauntlet_orchestrator.integration_plane.git_engine import GitEngine

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"true", "1"})


class DiffMode(StrEnum):
    COMMIT = "commit"
    UNCOMMITTED = "uncommitted"
    CI = "ci"
    LOCAL = "local"
    FIX_BASE = "fix_base"


@dataclass(frozen=True, slots=True)
class ChangeOptions:
    """Caller-selected diff source; at most one of these drives the mode."""

    commit: str | None = None
    uncommitted: bool = False
    fix_base: str | None = None


def is_ci_environment(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return (
        env.get("CI", "").strip().lower() in _TRUE_VALUES
        or env.get("GITHUB_ACTIONS", "").strip().lower() in _TRUE_VALUES
    )


def resolve_mode(options: ChangeOptions, *, environ: Mapping[str, str] | None = None) -> DiffMode:
    if options.fix_base:
        return DiffMode.FIX_BASE
    if options.commit:
        return DiffMode.COMMIT
    if options.uncommitted:
        return DiffMode.UNCOMMITTED
    if is_ci_environment(environ):
        return DiffMode.CI
    return DiffMode.LOCAL


def exclusion_pathspec(paths: Sequence[str], *, scope: str = ".") -> list[str]:
    """Pathspec arguments (after ``--``) limiting a diff to ``scope`` minus ``paths``."""

    spec = ["--", scope or "."]
    for path in paths:
        normalized = PurePosixPath(path).as_posix().strip("/")
        if normalized and normalized != ".":
            spec.append(f":(exclude){normalized}")
    return spec


class ChangeDetector:
    """List changed files and build review diffs for one invocation's diff mode."""

    def __init__(
        self,
        git: GitEngine,
        base_branch: str,
        options: ChangeOptions | None = None,
        *,
        exclude_paths: Sequence[str] = (),
        environ: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._git = git
        self._base_branch = base_branch
        self._options = options or ChangeOptions()
        self._exclude_paths = tuple(exclude_paths)
        self._environ = dict(os.environ if environ is None else environ)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self.mode = resolve_mode(self._options, environ=self._environ)

    @property
    def base_branch(self) -> str:
        return self._base_branch

    @property
    def options(self) -> ChangeOptions:
        return self._options

    @property
    def git(self) -> GitEngine:
        return self._git

    @property
    def exclude_paths(self) -> tuple[str, ...]:
        return self._exclude_paths

    def changed_files(self) -> tuple[str, ...]:
        """Sorted, de-duplicated paths touched under the active mode."""

        names: set[str] = set()
        if self.mode is DiffMode.FIX_BASE:
            names.update(self._names(self.require_fix_base(), self._git.working_tree()))
        elif self.mode is DiffMode.COMMIT:
            names.update(self._names(*self.commit_range()))
        elif self.mode is DiffMode.UNCOMMITTED:
            names.update(self._names("HEAD"))
            names.update(self.untracked_paths())
        elif self.mode is DiffMode.CI:
            names.update(self._names(*self.ci_range()))
        else:
            names.update(self._names(self.local_base()))
            names.update(self.untracked_paths())
        return tuple(sorted(names))

    def review_diff(self, entry_point: str = ".") -> str:
        """Unified diff text for ``entry_point`` under the active mode."""

        if self.mode is DiffMode.FIX_BASE:
            fix_base = self.require_fix_base()
            try:
                return self._git.diff(fix_base, self._git.working_tree(), *self._spec(entry_point))
            except GitCommandError as exc:
                self._logger.warning(
                    "fix_base_diff_failed",
                    fix_base=fix_base,
                    error=str(exc),
                    fallback=DiffMode.UNCOMMITTED.value,
                )
                return self._uncommitted_diff(entry_point)
        if self.mode is DiffMode.COMMIT:
            return self._git.diff(*self.commit_range(), *self._spec(entry_point))
        if self.mode is DiffMode.UNCOMMITTED:
            return self._uncommitted_diff(entry_point)
        if self.mode is DiffMode.CI:
            return self._git.diff(*self.ci_range(), *self._spec(entry_point))
        parts = [self._git.diff(self.local_base(), *self._spec(entry_point))]
        parts.extend(self._untracked_diffs(entry_point))
        return _join_diffs(parts)

    def commit_range(self) -> tuple[str, ...]:
        commit = self._options.commit or "HEAD"
        if self._git.has_parent(commit):
            return (f"{commit}^", commit)
        return (self._git.empty_tree(), commit)

    def ci_range(self) -> tuple[str, ...]:
        head = self._environ.get("GITHUB_SHA", "").strip() or "HEAD"
        if self._git.ref_exists(self._base_branch) and self._git.ref_exists(head):
            return (f"{self._base_branch}...{head}",)
        self._logger.warning("ci_base_unavailable", base_branch=self._base_branch, fallback="HEAD^")
        return ("HEAD^...HEAD",)

    def local_base(self) -> str:
        return self._git.merge_base(self._base_branch, "HEAD")

    def _uncommitted_diff(self, entry_point: str) -> str:
        parts = [self._git.diff("HEAD", *self._spec(entry_point))]
        parts.extend(self._untracked_diffs(entry_point))
        return _join_diffs(parts)

    def require_fix_base(self) -> str:
        fix_base = (self._options.fix_base or "").strip()
        if not self._git.is_hex_ref(fix_base):
            raise ValueError(f"fix base must be a hexadecimal object id, got {fix_base!r}")
        return fix_base

    def _names(self, *refs: str) -> tuple[str, ...]:
        output = self._git.diff("--name-only", *refs, *self._spec("."))
        return tuple(line.strip() for line in output.splitlines() if line.strip())

    def untracked_paths(self, entry_point: str = ".") -> tuple[str, ...]:
        return tuple(
            path
            for path in self._git.untracked_files()
            if not self._is_excluded(path) and _under(path, entry_point)
        )

    def _untracked_diffs(self, entry_point: str) -> list[str]:
        return [self._git.diff_new_file(path) for path in self.untracked_paths(entry_point)]

    def _spec(self, entry_point: str) -> list[str]:
        return exclusion_pathspec(self._exclude_paths, scope=entry_point)

    def _is_excluded(self, path: str) -> bool:
        return any(_under(path, excluded) for excluded in self._exclude_paths)


def _under(path: str, directory: str) -> bool:
    normalized = directory.strip().strip("/")
    if normalized in {"", "."}:
        return True
    return path == normalized or path.startswith(f"{normalized}/")


def _join_diffs(parts: Sequence[str]) -> str:
    chunks = [part if part.endswith("\n") else f"{part}\n" for part in parts if part.strip()]
    return "".join(chunks)


__all__ = [
    "ChangeDetector",
    "ChangeOptions",
    "DiffMode",
    "exclusion_pathspec",
    "is_ci_environment",
    "resolve_mode",
]
