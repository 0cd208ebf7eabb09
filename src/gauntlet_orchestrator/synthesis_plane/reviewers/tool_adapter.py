"""Reviewer adapters that delegate to locally-installed AI CLI tools (claude, codex, gemini).

File: src/gauntlet_orchestrator/synthesis_plane/reviewers/tool_adapter.py

Purpose
- Run a review prompt plus diff through a CLI tool in non-interactive mode.
- Content is always fed on stdin; every tool runs read-only.

Security
- Never extracts or logs auth tokens, cookies, or API keys.
- CLI tools manage their own authentication.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Final

from gauntlet_orchestrator.constants import HEALTH_CHECK_TIMEOUT_SECONDS
from gauntlet_orchestrator.domain.errors import (
    InvocationError,
    ReviewerTimeoutError,
    ReviewerUsageLimitError,
)
from gauntlet_orchestrator.synthesis_plane.reviewers.base import (
    HealthState,
    HealthStatus,
    ReviewerRegistry,
    ReviewRequest,
    is_usage_limit,
)
from gauntlet_orchestrator.utils.concurrency import run_with_timeout

_HEALTH_PROBE_PROMPT: Final[str] = "Reply with the single word OK."
_GEMINI_READ_ONLY_TOOLS: Final[str] = "read_file,list_directory,glob,search_file_content"
_STDERR_EXCERPT_CHARS: Final[int] = 200


class CLIReviewer:
    """Reviewer backed by a CLI binary that reads its full input from stdin."""

    name: str = "cli"
    binary: str = ""

    def __init__(
        self,
        *,
        project_root: Path | str | None = None,
        binary_path: str | None = None,
    ) -> None:
        root = Path(project_root) if project_root is not None else Path.cwd()
        self._project_root = root.resolve()
        self._binary_path = binary_path

    def is_available(self) -> bool:
        return self._resolve_binary() is not None

    async def check_health(self, *, check_usage_limit: bool = False) -> HealthStatus:
        if not self.is_available():
            return HealthStatus(False, HealthState.MISSING, f"{self.binary} not found on PATH")
        if not check_usage_limit:
            return HealthStatus(True, HealthState.HEALTHY)

        probe = ReviewRequest(
            prompt=_HEALTH_PROBE_PROMPT,
            diff="",
            timeout_seconds=HEALTH_CHECK_TIMEOUT_SECONDS,
        )
        try:
            output = await run_with_timeout(self.execute(probe), HEALTH_CHECK_TIMEOUT_SECONDS + 1)
        except ReviewerUsageLimitError as exc:
            return HealthStatus(True, HealthState.UNHEALTHY, f"Usage limit exceeded: {exc.detail}")
        except (InvocationError, TimeoutError) as exc:
            # A slow or failing probe does not prove the tool is out of quota.
            return HealthStatus(True, HealthState.HEALTHY, f"health probe inconclusive: {exc}")
        if is_usage_limit(output):
            return HealthStatus(True, HealthState.UNHEALTHY, "Usage limit exceeded")
        return HealthStatus(True, HealthState.HEALTHY)

    async def execute(self, request: ReviewRequest) -> str:
        binary = self._resolve_binary()
        if binary is None:
            raise InvocationError(
                f"{self.binary} not found on PATH", source=self.name, code="missing"
            )

        stdout, stderr, returncode = await self._run(
            [binary, *self.build_arguments(request)],
            request.content,
            cwd=request.cwd or str(self._project_root),
            timeout_seconds=request.timeout_seconds,
        )
        if returncode != 0:
            combined = f"{stdout}\n{stderr}"
            excerpt = stderr.strip()[:_STDERR_EXCERPT_CHARS] or "(no stderr)"
            if is_usage_limit(combined):
                raise ReviewerUsageLimitError(excerpt, source=self.name)
            raise InvocationError(
                f"{self.binary} exited with code {returncode}: {excerpt}",
                source=self.name,
                code="exit_status",
            )
        return stdout

    def build_arguments(self, request: ReviewRequest) -> list[str]:
        raise NotImplementedError

    def _resolve_binary(self) -> str | None:
        if self._binary_path is not None:
            return self._binary_path
        return shutil.which(self.binary)

    async def _run(
        self,
        command: list[str],
        content: str,
        *,
        cwd: str,
        timeout_seconds: float,
    ) -> tuple[str, str, int]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            raise InvocationError(str(exc), source=self.name, code="spawn_failed") from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(content.encode("utf-8")),
                timeout=timeout_seconds,
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise ReviewerTimeoutError(
                f"{self.binary} timed out after {timeout_seconds}s", source=self.name
            ) from None

        return (
            stdout_bytes.decode("utf-8", errors="replace"),
            stderr_bytes.decode("utf-8", errors="replace"),
            proc.returncode or 0,
        )


class ClaudeReviewer(CLIReviewer):
    name = "claude"
    binary = "claude"

    def build_arguments(self, request: ReviewRequest) -> list[str]:
        arguments = ["-p"]
        if request.model:
            arguments.extend(["--model", request.model])
        return arguments


class CodexReviewer(CLIReviewer):
    name = "codex"
    binary = "codex"

    def build_arguments(self, request: ReviewRequest) -> list[str]:
        arguments = [
            "exec",
            "--cd",
            str(self._project_root),
            "--sandbox",
            "read-only",
            "-c",
            'ask_for_approval="never"',
        ]
        if request.model:
            arguments.extend(["--model", request.model])
        arguments.append("-")
        return arguments


class GeminiReviewer(CLIReviewer):
    name = "gemini"
    binary = "gemini"

    def build_arguments(self, request: ReviewRequest) -> list[str]:
        arguments = [
            "--sandbox",
            "--allowed-tools",
            _GEMINI_READ_ONLY_TOOLS,
            "--output-format",
            "text",
        ]
        if request.model:
            arguments.extend(["--model", request.model])
        return arguments


REVIEWER_TYPES: Final[dict[str, type[CLIReviewer]]] = {
    ClaudeReviewer.name: ClaudeReviewer,
    CodexReviewer.name: CodexReviewer,
    GeminiReviewer.name: GeminiReviewer,
}


def build_default_registry(project_root: Path | str | None = None) -> ReviewerRegistry:
    return ReviewerRegistry(
        reviewer_type(project_root=project_root) for reviewer_type in REVIEWER_TYPES.values()
    )


__all__ = [
    "REVIEWER_TYPES",
    "CLIReviewer",
    "ClaudeReviewer",
    "CodexReviewer",
    "GeminiReviewer",
    "build_default_registry",
]
