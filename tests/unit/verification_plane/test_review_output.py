"""Unit tests for reviewer output parsing, finding filters, and prompt assembly."""

from __future__ import annotations

import json

import pytest

from gauntlet_orchestrator.domain.errors import ReviewOutputError
from gauntlet_orchestrator.domain.models import Priority, Violation, ViolationStatus
from gauntlet_orchestrator.verification_plane.review_output import (
    JSON_SYSTEM_INSTRUCTION,
    ReviewVerdict,
    build_review_prompt,
    filter_violations,
    parse_review_output,
)

_FAIL_DOC = {
    "status": "fail",
    "violations": [
        {"file": "src/app.py", "line": 12, "issue": "Null deref", "priority": "high"},
    ],
}


def test_parse_plain_json_failure() -> None:
    parsed = parse_review_output(json.dumps(_FAIL_DOC))

    assert parsed.verdict is ReviewVerdict.FAIL
    assert parsed.violations[0].priority is Priority.HIGH
    assert parsed.violations[0].status is ViolationStatus.NEW


def test_parse_fenced_json() -> None:
    output = "```json\n" + json.dumps({"status": "pass", "message": "clean"}) + "\n```\n"
    parsed = parse_review_output(output)
    assert parsed.verdict is ReviewVerdict.PASS
    assert parsed.message == "clean"


def test_pass_ignores_listed_violations() -> None:
    parsed = parse_review_output(json.dumps({**_FAIL_DOC, "status": "pass"}))
    assert parsed.violations == ()


@pytest.mark.parametrize(
    ("output", "match"),
    [
        ("", "empty output"),
        ("Here is my review: " + json.dumps(_FAIL_DOC), "not valid JSON"),
        ("[]", "JSON object"),
        (json.dumps({"status": "ok"}), '"status" must be'),
        (json.dumps({"status": "fail"}), "at least one violation"),
        (json.dumps({"status": "fail", "violations": {}}), "must be a list"),
        (
            json.dumps(
                {"status": "fail", "violations": [{"file": "a.py", "line": 1, "issue": "x"}]}
            ),
            "missing priority",
        ),
        (
            json.dumps(
                {
                    "status": "fail",
                    "violations": [
                        {"file": "a.py", "line": 1, "issue": "x", "priority": "blocker"}
                    ],
                }
            ),
            "priority",
        ),
    ],
)
def test_parse_rejects_malformed_output(output: str, match: str) -> None:
    with pytest.raises(ReviewOutputError, match=match) as excinfo:
        parse_review_output(output, source="claude")
    assert excinfo.value.code == "output_invalid"
    assert excinfo.value.source == "claude"


def test_filter_drops_out_of_scope_findings() -> None:
    findings = [
        Violation(file="src/app.py", line=12, issue="in scope", priority=Priority.LOW),
        Violation(file="src/app.py", line=99, issue="old code", priority=Priority.HIGH),
        Violation(file="docs/x.md", line=1, issue="not in diff", priority=Priority.HIGH),
    ]

    filtered = filter_violations(findings, {"src/app.py": {12, 13}})

    assert [item.issue for item in filtered.violations] == ["in scope"]
    assert filtered.out_of_scope == 2
    assert not filtered.passed


def test_threshold_discards_new_low_priority_findings_during_verification() -> None:
    prior = [Violation(file="src/app.py", line=12, issue="Null deref", priority=Priority.HIGH)]
    findings = [
        Violation(file="src/app.py", line=12, issue="Null deref", priority=Priority.LOW),
        Violation(file="src/app.py", line=13, issue="naming", priority=Priority.MEDIUM),
        Violation(file="src/app.py", line=13, issue="crash", priority=Priority.CRITICAL),
    ]

    filtered = filter_violations(
        findings, {"src/app.py": {12, 13}}, prior=prior, threshold=Priority.HIGH
    )

    assert [item.issue for item in filtered.violations] == ["Null deref", "crash"]
    assert filtered.below_threshold == 1


def test_new_finding_on_previously_flagged_line_still_faces_threshold() -> None:
    prior = [Violation(file="src/app.py", line=12, issue="Null deref", priority=Priority.HIGH)]
    findings = [Violation(file="src/app.py", line=12, issue="naming", priority=Priority.MEDIUM)]

    filtered = filter_violations(
        findings, {"src/app.py": {12}}, prior=prior, threshold=Priority.HIGH
    )

    assert filtered.violations == ()
    assert filtered.below_threshold == 1


def test_filtered_review_passes_when_only_skipped_or_fixed_remain() -> None:
    findings = [
        Violation(file="a.py", line=1, issue="x", status=ViolationStatus.SKIPPED),
        Violation(file="a.py", line=2, issue="y", status=ViolationStatus.FIXED),
    ]
    filtered = filter_violations(findings, {})
    assert filtered.passed
    assert filtered.new_violations == ()


def test_prompt_without_prior_violations() -> None:
    prompt = build_review_prompt("# Review for bugs")
    assert prompt.startswith("# Review for bugs\n")
    assert prompt.endswith(JSON_SYSTEM_INSTRUCTION)
    assert "RERUN MODE" not in prompt


def test_prompt_rerun_section_lists_fixed_and_unaddressed() -> None:
    prior = [
        Violation(
            file="src/a.py",
            line=3,
            issue="leak",
            fix="close it",
            status=ViolationStatus.FIXED,
            result="closed handle",
        ),
        Violation(file="src/b.py", line=7, issue="race"),
    ]

    prompt = build_review_prompt("# Review", prior)

    assert "RERUN MODE: VERIFY PREVIOUS FIXES ONLY" in prompt
    assert "1. src/a.py:3 - leak" in prompt
    assert "Suggested fix: close it" in prompt
    assert "Agent result: closed handle" in prompt
    assert "UNADDRESSED VIOLATIONS (STILL FAILING):\n1. src/b.py:7 - race" in prompt
    assert "src/a.py, src/b.py" in prompt


def test_prompt_rerun_section_without_fixed_items() -> None:
    prompt = build_review_prompt("# Review", [Violation(file="a.py", line=1, issue="x")])
    assert "(No violations were marked as FIXED for verification)" in prompt
