"""
gauntlet-orchestrator — check gate

File: src/gauntlet_orchestrator/verification_plane/check_gate.py

Purpose
- Preflight a check job (is its command executable from its working directory?).
- Execute the check command and translate the exit status into a ``GateResult``.

Functional requirements
- Exit code 0 is a pass; any other exit code is a fail; a timeout or spawn failure
  is an error.
- The job log ends with a ``Result: <status> - <message>`` line; recovery reads it back.
"""

from __future__ import annotations

import os
import re
import shlex
import shutil
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from gauntlet_orchestrator.config.schema import CheckGateConfig
from gauntlet_orchestrator.constants import DEFAULT_CHECK_TIMEOUT_SECONDS
from gauntlet_orchestrator.domain.errors import PreflightFailure
from gauntlet_orchestrator.domain.models import GateResult, GateStatus, JobKind
from gauntlet_orchestrator.verification_plane.command import CommandSpec

if TYPE_CHECKING:
    from gauntlet_orchestrator.domain.models import Job
    from gauntlet_orchestrator.persistence.artifacts import JobLog
    from gauntlet_orchestrator.verification_plane.command import CommandExecutor, CommandResult

_ENV_ASSIGNMENT_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_SHELL_BUILTINS: Final[frozenset[str]] = frozenset(
    {".", ":", "[", "cd", "echo", "exit", "export", "false", "set", "source", "test", "true"}
)


def command_name(command: str) -> str | None:
    """First token of ``command`` that is not ``env`` or a ``NAME=value`` assignment."""

    try:
        tokens = shlex.split(command)
    except ValueError:
        return None
    for token in tokens:
        if token == "env" or _is_env_assignment(token):
            continue
        return token
    return None


def command_exists(name: str, cwd: Path) -> bool:
    if name in _SHELL_BUILTINS:
        return True
    if "/" in name:
        candidate = Path(name)
        if not candidate.is_absolute():
            candidate = cwd / candidate
        return candidate.is_file() and os.access(candidate, os.X_OK)
    return shutil.which(name) is not None


def resolve_working_directory(project_root: Path, job: Job) -> Path:
    return (project_root / job.working_directory).resolve()


def preflight_check(job: Job, project_root: Path) -> None:
    """Raise :class:`PreflightFailure` when the job's command cannot be started."""

    if job.kind is not JobKind.CHECK:
        raise ValueError(f"{job.id} is not a check job")
    config = _check_config(job)
    cwd = resolve_working_directory(project_root, job)
    if not cwd.is_dir():
        detail = f"Working directory does not exist: {job.working_directory}"
        raise PreflightFailure(job.id, detail)
    name = command_name(config.command)
    if name is None:
        raise PreflightFailure(job.id, "Unable to parse command")
    if not command_exists(name, cwd):
        raise PreflightFailure(job.id, f"Missing command: {name}")


class CheckGate:
    """Runs check jobs through a :class:`CommandExecutor`."""

    def __init__(
        self,
        executor: CommandExecutor,
        project_root: Path,
        *,
        logger: Any | None = None,
    ) -> None:
        self._executor = executor
        self._project_root = Path(project_root)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def execute(self, job: Job, log: JobLog) -> GateResult:
        config = _check_config(job)
        started_ns = time.monotonic_ns()
        cwd = resolve_working_directory(self._project_root, job)
        timeout = config.timeout or DEFAULT_CHECK_TIMEOUT_SECONDS

        log.write(f"[START] {job.id}")
        log.write(f"Executing command: {config.command}\nWorking directory: {cwd}\n")

        result = await self._executor.run(
            CommandSpec(command=config.command, cwd=str(cwd), timeout_seconds=timeout)
        )
        if result.stdout:
            log.write(result.stdout)
        if result.stderr:
            log.write(f"STDERR:\n{result.stderr}")

        status, message = _classify(result, timeout)
        if status is not GateStatus.PASS:
            log.write(f"Command failed: {message}")
        log.write(f"Result: {status.value} - {message}")

        self._logger.info(
            "check_gate_finished",
            job_id=job.id,
            status=status.value,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
        )
        return GateResult(
            job_id=job.id,
            status=status,
            duration_ms=_elapsed_ms(started_ns),
            message=message,
            artifact_paths=(str(log.path),),
        )


def record_preflight_failure(
    job: Job, failure: PreflightFailure, log: JobLog | None
) -> GateResult:
    """Error result for a job that never started; check jobs keep a log for recovery."""

    if log is not None:
        log.write(f"Preflight failed\n{failure.detail}")
        log.write(f"Result: error - {failure.detail}")
    return GateResult(
        job_id=job.id,
        status=GateStatus.ERROR,
        duration_ms=0,
        message=failure.detail,
        artifact_paths=(str(log.path),) if log is not None else (),
    )


def _check_config(job: Job) -> CheckGateConfig:
    if not isinstance(job.gate_config, CheckGateConfig):
        raise TypeError(f"{job.id} does not carry a check gate config")
    return job.gate_config


def _classify(result: CommandResult, timeout: float) -> tuple[GateStatus, str]:
    if result.timed_out:
        return GateStatus.ERROR, f"Timed out after {timeout:g}s"
    if result.error is not None:
        return GateStatus.ERROR, result.error
    if result.exit_code == 0:
        return GateStatus.PASS, "Command exited with code 0"
    return GateStatus.FAIL, f"Exited with code {result.exit_code}"


def _is_env_assignment(token: str) -> bool:
    return _ENV_ASSIGNMENT_RE.match(token) is not None


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


__all__ = [
    "CheckGate",
    "command_exists",
    "command_name",
    "preflight_check",
    "record_preflight_failure",
    "resolve_working_directory",
]
