"""Unit tests for entry-point expansion and job generation."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gauntlet_orchestrator.config.schema import (
    CheckGateConfig,
    EntryPointConfig,
    GauntletConfig,
    ProjectConfig,
    ReviewGateConfig,
)
from gauntlet_orchestrator.domain.models import JobKind
from gauntlet_orchestrator.planning.entry_points import (
    ExpandedEntryPoint,
    expand_all,
    expand_entry_points,
    filter_excluded,
    glob_matches,
)
from gauntlet_orchestrator.planning.jobs import filter_jobs, generate_jobs


def _config(*entry_points: EntryPointConfig, **checks: CheckGateConfig) -> GauntletConfig:
    return GauntletConfig(
        project_root=Path("/project"),
        project=ProjectConfig(entry_points=entry_points),
        checks=checks
        or {
            "lint": CheckGateConfig(name="lint", command="ruff check ."),
            "test": CheckGateConfig(name="test", command="pytest", working_directory="."),
        },
        reviews={"quality": ReviewGateConfig(name="quality", prompt="Review it.")},
    )


@pytest.mark.parametrize(
    ("path", "pattern", "expected"),
    [
        ("src/app.py", "*.py", True),
        ("src/app.py", "src/**/*.py", True),
        ("src/pkg/app.py", "src/**/*.py", True),
        ("src/app.PY", "*.py", False),
        ("docs/readme.md", "src/*", False),
    ],
)
def test_glob_matches(path: str, pattern: str, expected: bool) -> None:
    assert glob_matches(path, pattern) is expected


def test_filter_excluded_supports_prefixes_and_globs() -> None:
    files = ["src/app.py", "src/generated/api.py", "docs/guide.md", "README.md"]
    assert filter_excluded(files, ["src/generated/", "*.md"]) == ["src/app.py"]
    assert filter_excluded(files, []) == files


def test_expand_entry_points_root_and_directories() -> None:
    root = EntryPointConfig(path=".", checks=("lint",), exclude=("docs",))
    src = EntryPointConfig(path="src", reviews=("quality",))
    docs = EntryPointConfig(path="docs", reviews=("quality",))

    expanded = expand_entry_points([src, docs, root], ["src/app.py"])

    assert [item.path for item in expanded] == [".", "src"]


def test_root_entry_point_skipped_when_everything_is_excluded() -> None:
    root = EntryPointConfig(path=".", checks=("lint",), exclude=("docs",))
    assert expand_entry_points([root], ["docs/guide.md"]) == []


def test_single_level_wildcard_expands_changed_subdirectories() -> None:
    engines = EntryPointConfig(path="engines/*", checks=("lint",))
    changed = ["engines/billing/a.py", "engines/billing/b.py", "engines/auth/x.py", "engines/x.py"]

    expanded = expand_entry_points([engines], changed)

    assert [item.path for item in expanded] == ["engines/billing", "engines/auth"]
    assert all(item.config is engines for item in expanded)


def test_glob_entry_point_kept_verbatim() -> None:
    scripts = EntryPointConfig(path="**/*.sh", checks=("lint",))
    assert [item.path for item in expand_entry_points([scripts], ["deploy.sh"])] == ["**/*.sh"]


def test_no_changes_means_no_entry_points() -> None:
    assert expand_entry_points([EntryPointConfig(path=".")], []) == []


def test_expand_all_lists_existing_wildcard_children(tmp_path: Path) -> None:
    (tmp_path / "engines" / "billing").mkdir(parents=True)
    (tmp_path / "engines" / "auth").mkdir()
    (tmp_path / "engines" / "README.md").write_text("x", encoding="utf-8")
    entries = [
        EntryPointConfig(path="engines/*"),
        EntryPointConfig(path="."),
        EntryPointConfig(path="gone/*"),
    ]

    assert [item.path for item in expand_all(entries, tmp_path)] == [
        "engines/auth",
        "engines/billing",
        ".",
    ]


def test_generate_jobs_ids_and_check_deduplication() -> None:
    entry = EntryPointConfig(path="pkgs/*", checks=("lint", "test"), reviews=("quality",))
    config = _config(entry)
    expanded = [ExpandedEntryPoint("pkgs/a", entry), ExpandedEntryPoint("pkgs/b", entry)]

    jobs = generate_jobs(config, expanded, ci=False)

    assert [job.id for job in jobs] == [
        "check:pkgs/a:lint",
        "check:.:test",
        "review:pkgs/a:quality",
        "check:pkgs/b:lint",
        "review:pkgs/b:quality",
    ]
    assert jobs[0].kind is JobKind.CHECK
    assert jobs[2].working_directory == "pkgs/a"


def test_generate_jobs_respects_ci_and_local_switches() -> None:
    entry = EntryPointConfig(path=".", checks=("ci_only", "local_only"))
    config = _config(
        entry,
        ci_only=CheckGateConfig(name="ci_only", command="x", run_locally=False),
        local_only=CheckGateConfig(name="local_only", command="y", run_in_ci=False),
    )
    expanded = [ExpandedEntryPoint(".", entry)]

    assert [job.name for job in generate_jobs(config, expanded, ci=True)] == ["ci_only"]
    assert [job.name for job in generate_jobs(config, expanded, ci=False)] == ["local_only"]


def test_generate_jobs_entrypoint_working_directory() -> None:
    entry = EntryPointConfig(path="svc", checks=("build",))
    config = _config(
        entry, build=CheckGateConfig(name="build", command="make", working_directory="entrypoint")
    )
    jobs = generate_jobs(config, [ExpandedEntryPoint("svc", entry)], ci=False)
    assert jobs[0].id == "check:svc:build"


def test_generate_jobs_warns_about_unknown_gates() -> None:
    entry = EntryPointConfig(path=".", checks=("nope",), reviews=("missing",))
    logger = MagicMock()

    jobs = generate_jobs(_config(entry), [ExpandedEntryPoint(".", entry)], ci=False, logger=logger)

    assert jobs == []
    assert [call.args[0] for call in logger.warning.call_args_list] == [
        "unknown_check_skipped",
        "unknown_review_skipped",
    ]


def test_filter_jobs_by_name_and_kind() -> None:
    entry = EntryPointConfig(path=".", checks=("lint", "test"), reviews=("quality",))
    jobs = generate_jobs(_config(entry), [ExpandedEntryPoint(".", entry)], ci=False)

    assert [job.name for job in filter_jobs(jobs, gate_filter="te")] == ["test"]
    assert [job.name for job in filter_jobs(jobs, kind=JobKind.REVIEW)] == ["quality"]
    assert filter_jobs(jobs) == jobs
