"""
gauntlet-orchestrator — diff scoping

File: src/gauntlet_orchestrator/integration_plane/diff_scope.py

Purpose
- Turn unified diff text into per-file sets of added target-side line numbers.
- Decide whether a reviewer-reported location falls inside the current change window.

Functional requirements
- Every ``+`` line inside a hunk (including content such as ``++i;``) adds its target
  line and advances the counter; ``+++`` file headers before the first hunk are skipped.
- Context lines advance the counter only; removed lines never advance it.
- Paths under version-control metadata directories are excluded entirely.
- A violation with no line, or in a file absent from the diff, is out of scope.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Final

from gauntlet_orchestrator.domain.models import coerce_line_number

DiffRanges = dict[str, set[int]]

_HUNK_HEADER_RE: Final[re.Pattern[str]] = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@")
_FILE_HEADER_PREFIX: Final[str] = "diff --git "
_METADATA_DIRS: Final[frozenset[str]] = frozenset({".git"})


def parse_diff(diff_text: str) -> DiffRanges:
    """Map each changed file to the set of target-side line numbers it adds."""

    ranges: DiffRanges = {}
    current_file: str | None = None
    target_line = 0
    in_hunk = False

    for raw_line in diff_text.splitlines():
        if raw_line.startswith(_FILE_HEADER_PREFIX):
            current_file = _target_path(raw_line)
            in_hunk = False
            if current_file is not None and _is_metadata_path(current_file):
                current_file = None
            if current_file is not None:
                ranges.setdefault(current_file, set())
            continue

        if current_file is None:
            continue

        header = _HUNK_HEADER_RE.match(raw_line)
        if header is not None:
            target_line = int(header.group(1))
            in_hunk = True
            continue

        # File headers (---/+++) only precede the first hunk; inside one, "+++" is content.
        if not in_hunk:
            continue

        if raw_line.startswith("+"):
            ranges[current_file].add(target_line)
            target_line += 1
        elif raw_line.startswith(" "):
            target_line += 1

    return ranges


def is_valid_violation_location(
    file: str | None,
    line: object,
    ranges: Mapping[str, set[int]] | None,
) -> bool:
    """Whether ``file:line`` lies on an added line of the current diff.

    With no diff ranges at all there is nothing to scope against, so every
    location is accepted. String lines made only of digits are coerced.
    """

    if not ranges:
        return True
    line_number = coerce_line_number(line)
    if line_number is None or not file:
        return False
    lines = ranges.get(_normalize_path(file))
    if lines is None:
        return False
    return line_number in lines


def changed_files(ranges: Mapping[str, set[int]]) -> tuple[str, ...]:
    return tuple(sorted(ranges))


def _target_path(header_line: str) -> str | None:
    # diff --git a/<path> b/<path>; paths with spaces keep the b/ side intact.
    remainder = header_line[len(_FILE_HEADER_PREFIX) :]
    marker = remainder.rfind(" b/")
    if marker != -1:
        return _normalize_path(remainder[marker + 3 :])
    parts = remainder.split()
    if len(parts) < 2:
        return None
    target = _normalize_path(parts[1])
    return target[2:] if target.startswith("b/") else target


def _normalize_path(path: str) -> str:
    normalized = path.strip()
    if normalized.startswith('"') and normalized.endswith('"') and len(normalized) >= 2:
        normalized = normalized[1:-1]
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _is_metadata_path(path: str) -> bool:
    return any(part in _METADATA_DIRS for part in PurePosixPath(path).parts)


__all__ = [
    "DiffRanges",
    "changed_files",
    "is_valid_violation_location",
    "parse_diff",
]
