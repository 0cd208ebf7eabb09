"""
gauntlet-orchestrator — reviewer output contract

File: src/gauntlet_orchestrator/verification_plane/review_output.py

Purpose
- Assemble the prompt sent to a reviewer (gate prompt, rerun context, JSON contract).
- Parse reviewer output strictly against the JSON violation schema.
- Apply the diff-scope filter and the rerun priority-threshold filter.

Functional requirements
- The whole output must be one JSON object, optionally wrapped in a single fenced
  code block. Nothing is extracted from surrounding prose.
- Every violation must carry ``file``, ``line``, ``issue`` and ``priority``;
  ``status`` defaults to ``new``.
- During verification, a new finding that matches no prior violation and ranks
  below the threshold is discarded; prior findings always survive the threshold.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from gauntlet_orchestrator.domain.errors import ReviewOutputError
from gauntlet_orchestrator.domain.models import Priority, Violation, ViolationStatus
from gauntlet_orchestrator.integration_plane.diff_scope import is_valid_violation_location

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_FENCED_BLOCK_RE: Final[re.Pattern[str]] = re.compile(
    r"\A```(?:json)?[ \t]*\n(.*)\n```\Z", re.DOTALL | re.IGNORECASE
)
_REQUIRED_VIOLATION_FIELDS: Final[tuple[str, ...]] = ("file", "line", "issue", "priority")
_RULE: Final[str] = "=" * 60

JSON_SYSTEM_INSTRUCTION: Final[str] = """
You are running in read-only mode. You may read repository files for context, but
you must not modify files, run commands that change system state, read anything
outside the repository root, or inspect the .git directory or commit history.

SCOPE:
- Review ONLY the changes shown in the diff.
- Every violation must name a file that appears in the diff and a line inside a
  changed region (a line starting with + in the diff).

OUTPUT: respond with a single JSON object and nothing else.
Each violation needs "file", "line", "issue", "priority" (one of "critical",
"high", "medium", "low") and "status" set to "new"; "fix" is optional.

When violations are found:
{
  "status": "fail",
  "violations": [
    {
      "file": "path/to/file.py",
      "line": 10,
      "issue": "Description of the violation",
      "fix": "How to fix it",
      "priority": "high",
      "status": "new"
    }
  ]
}

When nothing is found:
{
  "status": "pass",
  "message": "No problems found"
}
"""


class ReviewVerdict(StrEnum):
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class ParsedReview:
    verdict: ReviewVerdict
    violations: tuple[Violation, ...] = ()
    message: str | None = None


@dataclass(frozen=True, slots=True)
class FilteredReview:
    """Reviewer findings after scope and threshold filtering."""

    violations: tuple[Violation, ...]
    out_of_scope: int = 0
    below_threshold: int = 0

    @property
    def new_violations(self) -> tuple[Violation, ...]:
        return tuple(item for item in self.violations if item.status is ViolationStatus.NEW)

    @property
    def passed(self) -> bool:
        return not self.new_violations


def parse_review_output(output: str, *, source: str = "reviewer") -> ParsedReview:
    """Parse ``output`` as the review JSON document or raise :class:`ReviewOutputError`."""

    text = output.strip()
    fenced = _FENCED_BLOCK_RE.match(text)
    if fenced is not None:
        text = fenced.group(1).strip()
    if not text:
        raise ReviewOutputError("reviewer returned empty output", source=source)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ReviewOutputError(
            f"output is not valid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})",
            source=source,
        ) from None
    if not isinstance(payload, dict):
        raise ReviewOutputError("output must be a JSON object", source=source)

    raw_status = payload.get("status")
    try:
        verdict = ReviewVerdict(raw_status)
    except ValueError:
        raise ReviewOutputError(
            f'"status" must be "pass" or "fail", got {raw_status!r}', source=source
        ) from None

    message = payload.get("message")
    if message is not None and not isinstance(message, str):
        raise ReviewOutputError('"message" must be a string', source=source)

    raw_violations = payload.get("violations", [])
    if raw_violations is None:
        raw_violations = []
    if not isinstance(raw_violations, list):
        raise ReviewOutputError('"violations" must be a list', source=source)
    if verdict is ReviewVerdict.PASS:
        return ParsedReview(verdict, (), message)
    if not raw_violations:
        raise ReviewOutputError('status "fail" requires at least one violation', source=source)

    violations = tuple(
        _parse_violation(item, index, source) for index, item in enumerate(raw_violations)
    )
    return ParsedReview(verdict, violations, message)


def filter_violations(
    violations: Sequence[Violation],
    diff_ranges: Mapping[str, set[int]],
    *,
    prior: Sequence[Violation] = (),
    threshold: Priority | None = None,
) -> FilteredReview:
    """Diff-scope filter, then (when ``threshold`` is given) the rerun threshold filter."""

    in_scope = [
        item
        for item in violations
        if is_valid_violation_location(item.file, item.line, diff_ranges)
    ]
    out_of_scope = len(violations) - len(in_scope)
    if threshold is None:
        return FilteredReview(tuple(in_scope), out_of_scope=out_of_scope)

    kept = [item for item in in_scope if _survives_threshold(item, prior, threshold)]
    return FilteredReview(
        tuple(kept),
        out_of_scope=out_of_scope,
        below_threshold=len(in_scope) - len(kept),
    )


def build_review_prompt(body: str, prior: Sequence[Violation] = ()) -> str:
    """Gate prompt, plus a rerun section when prior violations exist, plus the JSON contract."""

    if not prior:
        return f"{body}\n{JSON_SYSTEM_INSTRUCTION}"
    return f"{body}\n\n{_rerun_section(prior)}\n{JSON_SYSTEM_INSTRUCTION}"


def _survives_threshold(item: Violation, prior: Sequence[Violation], threshold: Priority) -> bool:
    if any(previous.matches(item) for previous in prior):
        return True
    if item.priority is None:
        return True
    return item.priority.at_least(threshold)


def _rerun_section(prior: Sequence[Violation]) -> str:
    to_verify = [item for item in prior if item.status is ViolationStatus.FIXED]
    unaddressed = [item for item in prior if item.status is ViolationStatus.NEW]
    affected = ", ".join(dict.fromkeys(item.file for item in prior))

    lines = [
        _RULE,
        "RERUN MODE: VERIFY PREVIOUS FIXES ONLY",
        _RULE,
        "",
        "This is a rerun. The agent attempted to fix some of the violations below.",
        "Your task is limited to verifying the fixes for violations marked FIXED.",
        "",
        "PREVIOUS VIOLATIONS TO VERIFY:",
    ]
    if not to_verify:
        lines.append("(No violations were marked as FIXED for verification)")
    for index, item in enumerate(to_verify, start=1):
        lines.append(f"{index}. {item.file}:{item.line} - {item.issue}")
        if item.fix:
            lines.append(f"   Suggested fix: {item.fix}")
        if item.result:
            lines.append(f"   Agent result: {item.result}")
    lines.append("")

    if unaddressed:
        lines.append("UNADDRESSED VIOLATIONS (STILL FAILING):")
        for index, item in enumerate(unaddressed, start=1):
            lines.append(f"{index}. {item.file}:{item.line} - {item.issue}")
        lines.append("")

    lines.extend(
        [
            "RERUN INSTRUCTIONS:",
            "1. For each FIXED violation, confirm it no longer applies; if it still does,",
            '   report it again with status "new".',
            "2. Report every UNADDRESSED violation that still exists.",
            "3. Report a NEW violation only if it is a regression introduced by the fixes,",
            f"   in one of these files: {affected}",
            '4. Return status "pass" only if every previous violation is resolved and no',
            "   regression was introduced.",
            _RULE,
        ]
    )
    return "\n".join(lines)


def _parse_violation(item: object, index: int, source: str) -> Violation:
    path = f"violations[{index}]"
    if not isinstance(item, dict):
        raise ReviewOutputError(f"{path} must be an object", source=source)
    missing = [name for name in _REQUIRED_VIOLATION_FIELDS if item.get(name) in (None, "")]
    if missing:
        raise ReviewOutputError(f"{path} is missing {', '.join(missing)}", source=source)
    try:
        return Violation.from_dict(item, path=path)
    except ValueError as exc:
        raise ReviewOutputError(str(exc), source=source) from None


__all__ = [
    "JSON_SYSTEM_INSTRUCTION",
    "FilteredReview",
    "ParsedReview",
    "ReviewVerdict",
    "build_review_prompt",
    "filter_violations",
    "parse_review_output",
]
