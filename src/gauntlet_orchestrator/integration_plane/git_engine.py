"""Deterministic git wrapper providing the version-control capability used by every gate."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

from gauntlet_orchestrator.domain.errors import GauntletError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_HEX_REF_RE: Final[re.Pattern[str]] = re.compile(r"^[0-9a-f]+$")
_SNAPSHOT_MESSAGE: Final[str] = "gauntlet working-tree snapshot"


class GitEngineError(GauntletError):
    """Base error for git engine failures."""


class GitCommandError(GitEngineError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result for deterministic git wrapper behavior."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str


class GitEngine:
    """Thin wrapper around the git CLI for diffs, ancestry checks, and snapshots."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self._env_overrides = dict(env_overrides or {})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_branch(self) -> str:
        return self._run_git(["rev-parse", "--abbrev-ref", "HEAD"]).stdout.strip()

    def head_commit(self) -> str:
        return self._run_git(["rev-parse", "HEAD"]).stdout.strip()

    def rev_parse(self, ref: str) -> str:
        return self._run_git(["rev-parse", "--verify", ref]).stdout.strip()

    def ref_exists(self, ref: str) -> bool:
        result = self._run_git(
            ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], check=False
        )
        return result.returncode == 0

    def object_exists(self, sha: str) -> bool:
        """Whether ``sha`` names an object still present in the object database."""
        return self._run_git(["cat-file", "-t", sha], check=False).returncode == 0

    def is_ancestor(self, commit: str, ref: str) -> bool:
        """Whether ``commit`` is reachable from ``ref``; unknown refs count as not merged."""
        result = self._run_git(["merge-base", "--is-ancestor", commit, ref], check=False)
        return result.returncode == 0

    def has_parent(self, commit: str) -> bool:
        return self.ref_exists(f"{commit}^")

    def merge_base(self, left: str, right: str) -> str:
        return self._run_git(["merge-base", left, right]).stdout.strip()

    def empty_tree(self) -> str:
        return self._run_git(["hash-object", "-t", "tree", os.devnull]).stdout.strip()

    def is_hex_ref(self, ref: str) -> bool:
        return bool(_HEX_REF_RE.match(ref))

    def untracked_files(self) -> tuple[str, ...]:
        output = self._run_git(["ls-files", "--others", "--exclude-standard"]).stdout
        return _split_lines(output)

    def tree_paths(self, ref: str) -> frozenset[str]:
        output = self._run_git(["ls-tree", "-r", "--name-only", ref]).stdout
        return frozenset(_split_lines(output))

    def diff(self, *args: str) -> str:
        """Return ``git diff <args>`` output; raises ``GitCommandError`` on failure."""
        return self._run_git(["diff", *args]).stdout

    def diff_new_file(self, path: str) -> str:
        """Unified diff presenting an untracked ``path`` as fully added."""
        # --no-index exits 1 when the files differ, which is always the case here.
        result = self._run_git(["diff", "--no-index", "--", os.devnull, path], check=False)
        if result.returncode not in {0, 1}:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result.stdout

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def working_tree(self) -> str:
        """Write the full working tree (tracked edits plus untracked files) as a tree object.

        A throwaway index is used so neither the real index nor the working tree is touched.
        """
        with tempfile.TemporaryDirectory(prefix="gauntlet-index-") as temp_dir:
            index_path = Path(temp_dir) / "index"
            real_index = Path(self._run_git(["rev-parse", "--git-path", "index"]).stdout.strip())
            if not real_index.is_absolute():
                real_index = self.repo_path / real_index
            if real_index.is_file():
                shutil.copyfile(real_index, index_path)

            env = {"GIT_INDEX_FILE": str(index_path)}
            self._run_git(["add", "--all"], extra_env=env)
            return self._run_git(["write-tree"], extra_env=env).stdout.strip()

    def snapshot_working_tree(self) -> str:
        """Return a detached commit capturing the working tree, or HEAD when the tree is clean."""
        head = self.head_commit()
        tree = self.working_tree()
        head_tree = self._run_git(["rev-parse", f"{head}^{{tree}}"]).stdout.strip()
        if tree == head_tree:
            return head
        return self._run_git(
            ["commit-tree", tree, "-p", head, "-m", _SNAPSHOT_MESSAGE],
            extra_env=_SNAPSHOT_IDENTITY,
        ).stdout.strip()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        extra_env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        command = ("git", *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)
        if extra_env:
            env.update(extra_env)

        completed = subprocess.run(
            command,
            cwd=self.repo_path,
            env=env,
            text=True,
            capture_output=True,
            check=False,
        )

        result = CommandResult(
            command=command,
            cwd=self.repo_path.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result


_SNAPSHOT_IDENTITY: Final[dict[str, str]] = {
    "GIT_AUTHOR_NAME": "gauntlet",
    "GIT_AUTHOR_EMAIL": "gauntlet@localhost",
    "GIT_COMMITTER_NAME": "gauntlet",
    "GIT_COMMITTER_EMAIL": "gauntlet@localhost",
}


def _split_lines(output: str) -> tuple[str, ...]:
    return tuple(line.strip() for line in output.splitlines() if line.strip())


__all__ = [
    "CommandResult",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
]
