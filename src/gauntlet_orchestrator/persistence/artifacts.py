"""
gauntlet-orchestrator — artifact directory

File: src/gauntlet_orchestrator/persistence/artifacts.py

Purpose
- Own the artifact directory: filename codec, run-number allocation, the
  cross-invocation lock, per-job log files and review JSON persistence.

Functional requirements
- Check artifacts are named ``<sanitized job id>.<run>.log``.
- Review artifacts are named ``<sanitized job id>_<adapter>@<slot>.<run>.(log|json)``.
- The run number is ``1 + max(suffix)`` over every ``.log``/``.json`` at the directory
  root and is shared by every job in an invocation.
- The lock file is created exclusively, holds the owner pid, and is removed on
  every exit path.
- Archival empties ``previous/`` then moves current ``.log``/``.json`` artifacts into
  it; the execution state record stays in place.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

from gauntlet_orchestrator.constants import (
    ARTIFACT_SUFFIXES,
    EXECUTION_STATE_FILENAME,
    LOCK_FILENAME,
    PREVIOUS_LOGS_DIRNAME,
)
from gauntlet_orchestrator.domain.errors import LockConflictError
from gauntlet_orchestrator.domain.models import ReviewArtifact, utc_timestamp
from gauntlet_orchestrator.utils.fs import atomic_write, create_exclusive, move_into, safe_delete

if TYPE_CHECKING:
    from gauntlet_orchestrator.utils.fs import PathLike

_UNSAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^a-zA-Z0-9._-]")
_REVIEW_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^(.+)_([^@]+)@(\d+)\.(\d+)\.(log|json)$")
_NUMBERED_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^(.+)\.(\d+)\.(log|json)$")


def sanitize_job_id(job_id: str) -> str:
    """Replace every character outside ``[a-zA-Z0-9._-]`` with ``_``."""

    return _UNSAFE_CHARS_RE.sub("_", job_id)


@dataclass(frozen=True, slots=True)
class ArtifactKey:
    """Structured form of an artifact filename.

    ``prefix`` is the sanitized job id. Review artifacts carry ``adapter`` and
    ``slot_index``; check artifacts carry neither.
    """

    prefix: str
    run_number: int
    suffix: str = "log"
    adapter: str | None = None
    slot_index: int | None = None

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("ArtifactKey.prefix cannot be empty")
        if self.run_number < 1:
            raise ValueError("ArtifactKey.run_number must be >= 1")
        if f".{self.suffix}" not in ARTIFACT_SUFFIXES:
            raise ValueError(f"ArtifactKey.suffix must be one of {ARTIFACT_SUFFIXES}")
        if (self.adapter is None) != (self.slot_index is None):
            raise ValueError("ArtifactKey.adapter and slot_index must be set together")
        if self.adapter is not None and ("@" in self.adapter or not self.adapter):
            raise ValueError(f"invalid adapter name for artifact: {self.adapter!r}")
        if self.slot_index is not None and self.slot_index < 1:
            raise ValueError("ArtifactKey.slot_index must be >= 1")

    @classmethod
    def for_check(cls, job_id: str, run_number: int) -> ArtifactKey:
        return cls(prefix=sanitize_job_id(job_id), run_number=run_number)

    @classmethod
    def for_review(
        cls,
        job_id: str,
        adapter: str,
        slot_index: int,
        run_number: int,
        suffix: str = "json",
    ) -> ArtifactKey:
        return cls(
            prefix=sanitize_job_id(job_id),
            run_number=run_number,
            suffix=suffix,
            adapter=adapter,
            slot_index=slot_index,
        )

    @property
    def is_review(self) -> bool:
        return self.slot_index is not None

    def with_suffix(self, suffix: str) -> ArtifactKey:
        return ArtifactKey(
            prefix=self.prefix,
            run_number=self.run_number,
            suffix=suffix,
            adapter=self.adapter,
            slot_index=self.slot_index,
        )

    @property
    def filename(self) -> str:
        return encode_artifact_name(self)


def encode_artifact_name(key: ArtifactKey) -> str:
    if key.adapter is not None and key.slot_index is not None:
        return f"{key.prefix}_{key.adapter}@{key.slot_index}.{key.run_number}.{key.suffix}"
    return f"{key.prefix}.{key.run_number}.{key.suffix}"


def decode_artifact_name(filename: str) -> ArtifactKey | None:
    """Parse an artifact filename; anything that is not a numbered artifact yields ``None``."""

    review = _REVIEW_NAME_RE.match(filename)
    if review is not None:
        prefix, adapter, slot, run, suffix = review.groups()
        slot_index = int(slot)
        run_number = int(run)
        if slot_index >= 1 and run_number >= 1:
            return ArtifactKey(
                prefix=prefix,
                run_number=run_number,
                suffix=suffix,
                adapter=adapter,
                slot_index=slot_index,
            )
        return None

    numbered = _NUMBERED_NAME_RE.match(filename)
    if numbered is None:
        return None
    prefix, run, suffix = numbered.groups()
    run_number = int(run)
    if run_number < 1 or "@" in prefix:
        return None
    return ArtifactKey(prefix=prefix, run_number=run_number, suffix=suffix)


class JobLog:
    """Append-only human-readable log for one job or review slot.

    The first line of every write is prefixed with an ISO-8601 timestamp.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("", encoding="utf-8")

    def write(self, text: str) -> None:
        lines = text.split("\n")
        lines[0] = f"[{utc_timestamp()}] {lines[0]}"
        payload = "\n".join(lines)
        if not payload.endswith("\n"):
            payload += "\n"
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(payload)


class ArtifactDirectory:
    """Filesystem-backed store for every artifact produced by gate runs."""

    def __init__(self, root: PathLike) -> None:
        self.root = Path(root)

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILENAME

    @property
    def previous_dir(self) -> Path:
        return self.root / PREVIOUS_LOGS_DIRNAME

    @property
    def state_path(self) -> Path:
        return self.root / EXECUTION_STATE_FILENAME

    def path_for(self, key: ArtifactKey) -> Path:
        return self.root / key.filename

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def filenames(self) -> tuple[str, ...]:
        """Root-level file names (``previous/`` is not scanned)."""

        if not self.root.is_dir():
            return ()
        return tuple(sorted(entry.name for entry in self.root.iterdir() if entry.is_file()))

    def listing(self) -> tuple[ArtifactKey, ...]:
        keys = (decode_artifact_name(name) for name in self.filenames())
        return tuple(sorted((key for key in keys if key is not None), key=_listing_order))

    def next_run_number(self) -> int:
        return 1 + max((key.run_number for key in self.listing()), default=0)

    def has_existing_logs(self) -> bool:
        return any(name.endswith(".log") for name in self.filenames())

    # ------------------------------------------------------------------
    # Reading and writing
    # ------------------------------------------------------------------

    def open_log(self, key: ArtifactKey) -> JobLog:
        return JobLog(self.path_for(key.with_suffix("log")))

    def write_review(self, key: ArtifactKey, artifact: ReviewArtifact) -> Path:
        target = self.path_for(key.with_suffix("json"))
        self.root.mkdir(parents=True, exist_ok=True)
        atomic_write(target, json.dumps(artifact.to_dict(), indent=2, ensure_ascii=False) + "\n")
        return target

    def read_review(self, key: ArtifactKey) -> ReviewArtifact:
        """Load a review JSON artifact; raises ``ValueError`` on malformed content."""

        target = self.path_for(key.with_suffix("json"))
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"{target.name}: invalid JSON: {exc.msg}") from exc
        return ReviewArtifact.from_dict(payload)

    def read_text(self, key: ArtifactKey) -> str:
        return self.path_for(key).read_text(encoding="utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Lock and archival
    # ------------------------------------------------------------------

    @contextmanager
    def lock(self) -> Iterator[Path]:
        """Hold the exclusive run lock for the duration of the ``with`` block."""

        self.root.mkdir(parents=True, exist_ok=True)
        try:
            create_exclusive(self.lock_path, str(os.getpid()))
        except FileExistsError:
            raise LockConflictError(str(self.lock_path), _read_owner(self.lock_path)) from None
        try:
            yield self.lock_path
        finally:
            self.lock_path.unlink(missing_ok=True)

    def clean(self) -> int:
        """Archive current artifacts into ``previous/``; returns the number of files moved."""

        if not self.root.is_dir():
            return 0
        previous = self.previous_dir
        if previous.is_dir():
            for entry in previous.iterdir():
                safe_delete(entry, self.root)
        else:
            previous.mkdir(parents=True)

        moved = 0
        for name in self.filenames():
            if name.endswith(ARTIFACT_SUFFIXES):
                move_into(self.root / name, previous, self.root)
                moved += 1
        return moved


def _listing_order(key: ArtifactKey) -> tuple[str, int, int, str]:
    return (key.prefix, key.slot_index or 0, key.run_number, key.suffix)


def _read_owner(lock_path: Path) -> str | None:
    try:
        owner = lock_path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return owner or None


__all__ = [
    "ArtifactDirectory",
    "ArtifactKey",
    "JobLog",
    "decode_artifact_name",
    "encode_artifact_name",
    "sanitize_job_id",
]
