"""Entry-point expansion: map configured entry points onto the current change set."""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from gauntlet_orchestrator.config.schema import EntryPointConfig

ROOT_ENTRY_POINT: Final[str] = "."

_GLOB_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[*?\[{]")


@dataclass(frozen=True, slots=True)
class ExpandedEntryPoint:
    """A concrete path (``engines/billing``) and the config that produced it (``engines/*``)."""

    path: str
    config: EntryPointConfig


def is_glob_pattern(pattern: str) -> bool:
    return bool(_GLOB_CHARS_RE.search(pattern))


def glob_matches(path: str, pattern: str) -> bool:
    """Case-sensitive glob match where ``**/`` may also match zero directories."""

    if fnmatch.fnmatchcase(path, pattern):
        return True
    return "**/" in pattern and fnmatch.fnmatchcase(path, pattern.replace("**/", ""))


def filter_excluded(files: Iterable[str], patterns: Sequence[str]) -> list[str]:
    """Drop files matching any exclude glob, or lying under any exclude prefix."""

    remaining = list(files)
    if not patterns:
        return remaining
    globs = [pattern for pattern in patterns if is_glob_pattern(pattern)]
    prefixes = [pattern.rstrip("/") for pattern in patterns if not is_glob_pattern(pattern)]
    return [
        path
        for path in remaining
        if not any(path == prefix or path.startswith(f"{prefix}/") for prefix in prefixes)
        and not any(glob_matches(path, pattern) for pattern in globs)
    ]


def expand_entry_points(
    entry_points: Sequence[EntryPointConfig],
    changed_files: Sequence[str],
) -> list[ExpandedEntryPoint]:
    """Entry points that have at least one relevant changed file.

    The root entry point is included whenever anything changed (after its own
    excludes); ``dir/*`` expands to every changed immediate subdirectory.
    """

    results: list[ExpandedEntryPoint] = []
    if not changed_files:
        return results

    root = next((entry for entry in entry_points if entry.path == ROOT_ENTRY_POINT), None)
    if root is not None and filter_excluded(changed_files, root.exclude):
        results.append(ExpandedEntryPoint(ROOT_ENTRY_POINT, root))

    for entry in entry_points:
        if entry.path == ROOT_ENTRY_POINT:
            continue
        relevant = filter_excluded(changed_files, entry.exclude)
        if not relevant:
            continue

        if _is_single_level_wildcard(entry.path):
            for subdirectory in _changed_subdirectories(entry.path[:-2], relevant):
                results.append(ExpandedEntryPoint(subdirectory, entry))
        elif is_glob_pattern(entry.path):
            if any(glob_matches(path, entry.path) for path in relevant):
                results.append(ExpandedEntryPoint(entry.path, entry))
        elif _has_changes_in(entry.path, relevant):
            results.append(ExpandedEntryPoint(entry.path, entry))

    return results


def expand_all(
    entry_points: Sequence[EntryPointConfig],
    project_root: Path,
) -> list[ExpandedEntryPoint]:
    """Every entry point regardless of changes; wildcards expand to existing subdirectories."""

    results: list[ExpandedEntryPoint] = []
    for entry in entry_points:
        if _is_single_level_wildcard(entry.path):
            parent = project_root / entry.path[:-2]
            if not parent.is_dir():
                continue
            for child in sorted(parent.iterdir()):
                if child.is_dir():
                    relative = PurePosixPath(entry.path[:-2]) / child.name
                    results.append(ExpandedEntryPoint(relative.as_posix(), entry))
            continue
        results.append(ExpandedEntryPoint(entry.path, entry))
    return results


def _is_single_level_wildcard(path: str) -> bool:
    return path.endswith("/*") and "**" not in path


def _changed_subdirectories(parent: str, files: Sequence[str]) -> list[str]:
    seen: dict[str, None] = {}
    prefix = f"{parent.rstrip('/')}/"
    for path in files:
        if not path.startswith(prefix):
            continue
        remainder = path[len(prefix) :]
        # Files directly inside the parent do not belong to any subdirectory.
        if "/" not in remainder:
            continue
        seen.setdefault(f"{prefix}{remainder.split('/', 1)[0]}", None)
    return list(seen)


def _has_changes_in(directory: str, files: Sequence[str]) -> bool:
    normalized = directory.rstrip("/")
    return any(path == normalized or path.startswith(f"{normalized}/") for path in files)


__all__ = [
    "ROOT_ENTRY_POINT",
    "ExpandedEntryPoint",
    "expand_all",
    "expand_entry_points",
    "filter_excluded",
    "glob_matches",
    "is_glob_pattern",
]
