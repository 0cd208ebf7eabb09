"""
gauntlet-orchestrator — test suite for the execution-state record and fix-base resolution.

File: tests/unit/persistence/test_execution_state.py

Purpose
- Validate state persistence, fix-base resolution order, and stale-state detection
  over real temporary git repositories.
"""

from __future__ import annotations

import json
import os
import subprocess
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from gauntlet_orchestrator.domain.models import ExecutionState
from gauntlet_orchestrator.integration_plane.git_engine import GitEngine
from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory
from gauntlet_orchestrator.persistence.execution_state import (
    SNAPSHOT_COLLECTED_WARNING,
    AutoCleanReason,
    ExecutionStateStore,
)

if TYPE_CHECKING:
    from pathlib import Path

_MISSING_SHA = "0123456789abcdef0123456789abcdef01234567"


def run_git(cwd: Path, *args: str) -> str:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    completed = subprocess.run(
        ["git", *args], cwd=cwd, env=env, text=True, capture_output=True, check=False
    )
    if completed.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed:\n{completed.stderr}")
    return completed.stdout.strip()


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


def commit_file(repo: Path, rel_path: str, content: str, message: str) -> str:
    path = repo / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    run_git(repo, "add", "--all")
    run_git(repo, "commit", "-m", message)
    return run_git(repo, "rev-parse", "HEAD")


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    run_git(root, "init", "-b", "main")
    run_git(root, "config", "user.email", "dev@example.com")
    run_git(root, "config", "user.name", "Dev")
    commit_file(root, "README.md", "hello\n", "initial")
    run_git(root, "checkout", "-b", "feature")
    commit_file(root, "src/app.py", "print('a')\n", "feature work")
    return root


@pytest.fixture
def store(repo: Path) -> ExecutionStateStore:
    return ExecutionStateStore(
        ArtifactDirectory(repo / "gauntlet_logs"), GitEngine(repo), logger=MagicMock()
    )


def test_read_missing_state_is_none(store: ExecutionStateStore) -> None:
    assert store.read() is None


def test_read_corrupt_state_is_none(repo: Path, store: ExecutionStateStore) -> None:
    (repo / "gauntlet_logs").mkdir()
    (repo / "gauntlet_logs" / ".execution_state").write_text("{oops", encoding="utf-8")
    assert store.read() is None


def test_write_captures_branch_commit_and_snapshot(repo: Path, store: ExecutionStateStore) -> None:
    logs = repo / "gauntlet_logs"
    logs.mkdir()
    (logs / ".session_ref").write_text("legacy", encoding="utf-8")

    record = store.write()

    assert record.branch == "feature"
    assert record.commit == run_git(repo, "rev-parse", "HEAD")
    assert record.working_tree_ref is not None
    assert not (logs / ".session_ref").exists()
    payload = json.loads((logs / ".execution_state").read_text(encoding="utf-8"))
    assert payload["branch"] == "feature"
    assert store.read() == record


def test_snapshot_of_dirty_tree_differs_from_head(repo: Path, store: ExecutionStateStore) -> None:
    (repo / "src" / "app.py").write_text("print('b')\n", encoding="utf-8")

    record = store.capture()

    assert record.working_tree_ref != record.commit
    assert run_git(repo, "status", "--porcelain") == "M src/app.py"


def test_resolve_prefers_live_snapshot(repo: Path, store: ExecutionStateStore) -> None:
    (repo / "untracked.txt").write_text("new\n", encoding="utf-8")
    record = store.capture()

    resolution = store.resolve_fix_base(record, "main")

    assert resolution.fix_base == record.working_tree_ref
    assert resolution.warning is None


def test_resolve_falls_back_to_commit_when_snapshot_collected(
    repo: Path, store: ExecutionStateStore
) -> None:
    head = run_git(repo, "rev-parse", "HEAD")
    record = ExecutionState(
        last_run_completed_at="2026-01-01T00:00:00.000Z",
        branch="feature",
        commit=head,
        working_tree_ref=_MISSING_SHA,
    )

    resolution = store.resolve_fix_base(record, "main")

    assert resolution.fix_base == head
    assert resolution.warning == SNAPSHOT_COLLECTED_WARNING


def test_resolve_merged_commit_yields_no_anchor(repo: Path, store: ExecutionStateStore) -> None:
    record = store.capture()
    run_git(repo, "checkout", "main")
    run_git(repo, "merge", "--ff-only", "feature")

    assert store.resolve_fix_base(record, "main").fix_base is None


def test_resolve_unknown_commit_yields_no_anchor(store: ExecutionStateStore) -> None:
    record = ExecutionState(
        last_run_completed_at="2026-01-01T00:00:00.000Z",
        branch="feature",
        commit=_MISSING_SHA,
    )
    assert store.resolve_fix_base(record, "main").fix_base is None


def test_auto_clean_reason_branch_changed(repo: Path, store: ExecutionStateStore) -> None:
    store.write()
    run_git(repo, "checkout", "main")

    assert store.auto_clean_reason("main") is AutoCleanReason.BRANCH_CHANGED


def test_auto_clean_reason_commit_merged(repo: Path, store: ExecutionStateStore) -> None:
    store.write()
    run_git(repo, "branch", "-f", "main", "feature")

    assert store.auto_clean_reason("main") is AutoCleanReason.COMMIT_MERGED


def test_auto_clean_reason_absent_without_state(store: ExecutionStateStore) -> None:
    assert store.auto_clean_reason("main") is None


def test_perform_auto_clean_archives_logs_and_deletes_state(
    repo: Path, store: ExecutionStateStore
) -> None:
    store.write()
    logs = repo / "gauntlet_logs"
    (logs / "check_lint.1.log").write_text("Result: fail\n", encoding="utf-8")

    moved = store.perform_auto_clean(AutoCleanReason.BRANCH_CHANGED)

    assert moved == 1
    assert (logs / "previous" / "check_lint.1.log").exists()
    assert store.read() is None
