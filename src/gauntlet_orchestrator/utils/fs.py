"""
gauntlet-orchestrator — filesystem helpers for the log directory

File: src/gauntlet_orchestrator/utils/fs.py

Purpose
- Write the execution-state record atomically, create the run lock exclusively, and
  archive or delete artifacts without ever touching anything outside the log directory.

Functional requirements
- ``atomic_write`` goes through a temp file in the destination directory and
  ``os.replace``; readers see the old content or the new content, never a mix.
- ``create_exclusive`` raises ``FileExistsError`` when the path already exists.
- ``move_into`` and ``safe_delete`` raise ``ValueError`` for paths outside ``root``.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    target = Path(path)
    payload = data.encode(encoding) if isinstance(data, str) else data
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, target)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def create_exclusive(path: PathLike, text: str, *, encoding: str = "utf-8") -> None:
    """Create ``path`` holding ``text``; the lock primitive for concurrent runs."""

    with open(path, "x", encoding=encoding) as handle:
        handle.write(text)


def move_into(path: PathLike, destination_dir: PathLike, root: PathLike) -> Path:
    """Move ``path`` into ``destination_dir`` (created on demand) and return the new path."""

    source = _contained(path, root, action="move")
    destination = Path(destination_dir)
    _contained(destination / source.name, root, action="move")
    destination.mkdir(parents=True, exist_ok=True)
    target = destination / source.name
    os.replace(source, target)
    return target


def safe_delete(path: PathLike, root: PathLike) -> None:
    """Remove a file, symlink (not its target) or directory tree under ``root``."""

    target = _contained(path, root, action="delete")
    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    else:
        target.unlink()


def _contained(path: PathLike, root: PathLike, *, action: str) -> Path:
    candidate = Path(path)
    # Resolve the parent only, so a symlink entry is judged by where it sits.
    located = candidate.parent.resolve() / candidate.name
    if not located.is_relative_to(Path(root).resolve()):
        raise ValueError(f"refusing to {action} path outside {root}: {candidate}")
    return candidate


__all__ = ["PathLike", "atomic_write", "create_exclusive", "move_into", "safe_delete"]
