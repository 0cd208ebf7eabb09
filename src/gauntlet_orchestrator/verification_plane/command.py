"""
gauntlet-orchestrator — command executor capability

File: src/gauntlet_orchestrator/verification_plane/command.py

Purpose
- Run one shell command for a check gate in a working directory, capturing
  stdout/stderr and the exit code under a caller-supplied timeout.

Functional requirements
- A timed-out command is killed together with its process group and reported with
  ``timed_out=True`` and no exit code; it is never left running.
- Spawn failures are reported through ``error`` rather than raised.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Final, Protocol, runtime_checkable

_MAX_OUTPUT_CHARS: Final[int] = 200_000


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Shell command invocation used by check gates."""

    command: str
    cwd: str | None = None
    timeout_seconds: float | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.command, str) or not self.command.strip():
            raise ValueError("CommandSpec.command: must be a non-empty string")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("CommandSpec.timeout_seconds: must be > 0")

    def build_env(self) -> dict[str, str] | None:
        if not self.env:
            return None
        merged = dict(os.environ)
        merged.update(self.env)
        return merged


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Deterministic command execution outcome."""

    command: str
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface for check gates."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor:
    """Async local shell executor with deterministic capture and timeout behavior."""

    def __init__(self, *, max_output_chars: int | None = _MAX_OUTPUT_CHARS) -> None:
        self._max_output_chars = max_output_chars

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        try:
            process = await asyncio.create_subprocess_shell(
                spec.command,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            return CommandResult(
                command=spec.command,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        try:
            if spec.timeout_seconds is None:
                stdout_bytes, stderr_bytes = await process.communicate()
            else:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(), timeout=spec.timeout_seconds
                )
        except TimeoutError:
            _kill_process_group(process)
            stdout_bytes, stderr_bytes = await process.communicate()
            return CommandResult(
                command=spec.command,
                exit_code=None,
                stdout=self._decode(stdout_bytes),
                stderr=self._decode(stderr_bytes),
                duration_ms=_elapsed_ms(started_ns),
                timed_out=True,
                error=f"command timed out after {spec.timeout_seconds:g}s",
            )
        except asyncio.CancelledError:
            _kill_process_group(process)
            await process.communicate()
            raise

        return CommandResult(
            command=spec.command,
            exit_code=process.returncode,
            stdout=self._decode(stdout_bytes),
            stderr=self._decode(stderr_bytes),
            duration_ms=_elapsed_ms(started_ns),
        )

    def _decode(self, raw: bytes) -> str:
        text = raw.decode("utf-8", errors="replace").replace("\r\n", "\n")
        limit = self._max_output_chars
        if limit is None or len(text) <= limit:
            return text
        return f"{text[:limit]}\n...[truncated {len(text) - limit} chars]"


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    # The shell is the session leader; killing the group also stops its children.
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, signal.SIGKILL)
    with suppress(ProcessLookupError):
        process.kill()


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
]
