"""Unit tests for ``.gauntlet/`` config loading, precedence, and strict validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from gauntlet_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
)
from gauntlet_orchestrator.config.loader import find_project_root, merge_config, split_front_matter
from gauntlet_orchestrator.domain.models import Priority

_CONFIG = """\
base_branch: origin/develop
max_retries: 2
entry_points:
  - path: src
    checks: [lint]
    reviews: [code-quality]
    exclude: [src/generated]
"""

_REVIEW = """\
---
num_reviews: 2
cli_preference: [codex, claude]
timeout: 120
---
# Code quality

Look for bugs.
"""


def write_project(
    root: Path,
    *,
    config: str = _CONFIG,
    checks: dict[str, str] | None = None,
    reviews: dict[str, str] | None = None,
) -> Path:
    gauntlet = root / ".gauntlet"
    (gauntlet / "checks").mkdir(parents=True, exist_ok=True)
    (gauntlet / "reviews").mkdir(parents=True, exist_ok=True)
    (gauntlet / "config.yml").write_text(config, encoding="utf-8")
    for name, text in (checks if checks is not None else {"lint": "command: ruff check ."}).items():
        (gauntlet / "checks" / f"{name}.yml").write_text(text, encoding="utf-8")
    for name, text in (reviews if reviews is not None else {"code-quality": _REVIEW}).items():
        (gauntlet / "reviews" / f"{name}.md").write_text(text, encoding="utf-8")
    return root


def test_load_config_reads_project_checks_and_reviews(tmp_path: Path) -> None:
    config = load_config(write_project(tmp_path), environ={})

    assert config.project.base_branch == "origin/develop"
    assert config.project.max_retries == 2
    assert config.project.rerun_new_issue_threshold is Priority.HIGH
    assert config.project.entry_points[0].exclude == ("src/generated",)
    assert config.checks["lint"].command == "ruff check ."
    assert config.checks["lint"].parallel is False

    review = config.reviews["code-quality"]
    assert review.num_reviews == 2
    assert review.timeout == 120.0
    assert review.prompt.startswith("# Code quality")
    assert config.reviewer_preference(review) == ("codex", "claude")
    assert config.log_dir == tmp_path.resolve() / "gauntlet_logs"


def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    write_project(tmp_path)

    from_env = load_config(tmp_path, environ={"GAUNTLET_MAX_RETRIES": "5"})
    from_cli = load_config(
        tmp_path,
        environ={"GAUNTLET_MAX_RETRIES": "5"},
        cli_overrides={"max_retries": 7, "base_branch": None},
    )

    assert from_env.project.max_retries == 5
    assert from_cli.project.max_retries == 7
    assert from_cli.project.base_branch == "origin/develop"


def test_env_bool_coercion_failure_is_load_error(tmp_path: Path) -> None:
    write_project(tmp_path)
    with pytest.raises(ConfigLoadError, match="GAUNTLET_ALLOW_PARALLEL"):
        load_config(tmp_path, environ={"GAUNTLET_ALLOW_PARALLEL": "maybe"})


def test_find_project_root_walks_up(tmp_path: Path) -> None:
    write_project(tmp_path)
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)

    assert find_project_root(nested) == tmp_path.resolve()


def test_missing_gauntlet_directory_is_load_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match=".gauntlet"):
        find_project_root(tmp_path)


def test_invalid_yaml_is_load_error(tmp_path: Path) -> None:
    write_project(tmp_path, config="entry_points: [unclosed\n")
    with pytest.raises(ConfigLoadError, match="invalid YAML"):
        load_config(tmp_path, environ={})


def test_validation_reports_every_issue_at_once(tmp_path: Path) -> None:
    write_project(
        tmp_path,
        config=(
            "max_retries: -1\n"
            "rerun_new_issue_threshold: urgent\n"
            "surprise: true\n"
            "cli:\n  default_preference: [copilot]\n"
            "entry_points:\n  - path: .\n    checks: [missing]\n"
        ),
        checks={"lint": "command: ruff\nparallel: true\nfail_fast: true\n"},
        reviews={"empty": "---\nnum_reviews: 0\n---\n"},
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(tmp_path, environ={})

    paths = {issue.path for issue in excinfo.value.issues}
    assert {
        "config.max_retries",
        "config.rerun_new_issue_threshold",
        "config.surprise",
        "config.cli.default_preference",
        "config.entry_points[0].checks",
        "checks/lint.yml.fail_fast",
        "reviews/empty.md.prompt",
        "reviews/empty.md.num_reviews",
    } <= paths


def test_entry_points_are_required(tmp_path: Path) -> None:
    write_project(tmp_path, config="base_branch: main\n")
    with pytest.raises(ConfigValidationError, match="at least one entry point"):
        load_config(tmp_path, environ={})


def test_check_requires_command(tmp_path: Path) -> None:
    write_project(tmp_path, checks={"lint": "name: lint\n"})
    with pytest.raises(ConfigValidationError, match="checks/lint.yml.command"):
        load_config(tmp_path, environ={})


def test_split_front_matter() -> None:
    meta, body = split_front_matter("---\nmodel: opus\n---\nBody\n")
    assert meta == {"model": "opus"}
    assert body == "Body\n"

    assert split_front_matter("No front matter") == ({}, "No front matter")

    with pytest.raises(ConfigLoadError, match="mapping"):
        split_front_matter("---\n- a\n---\nBody")


def test_merge_config_replaces_lists_and_merges_mappings() -> None:
    base = {"cli": {"default_preference": ["claude"], "check_usage_limit": False}, "x": [1]}
    merged = merge_config(base, {"cli": {"check_usage_limit": True}, "x": [2]})

    assert merged == {
        "cli": {"default_preference": ["claude"], "check_usage_limit": True},
        "x": [2],
    }
    assert base["cli"]["check_usage_limit"] is False  # type: ignore[index]
