"""Output rendering for the gauntlet CLI.

File: src/gauntlet_orchestrator/ui/render.py

Purpose
- Provide a thin plain-text rendering layer for CLI output.
- Render run outcomes (per-gate results, counts, diff summary) in one place so every
  command prints them the same way.

Functional requirements
- Plain-text rendering only; output is deterministic for a given outcome.
- Progress messages go to stderr so stdout stays clean for ``--json`` payloads.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gauntlet_orchestrator.domain.models import GateResult, RunOutcome

_STATUS_LABELS = {
    "pass": "PASS",
    "fail": "FAIL",
    "error": "ERROR",
}


class CLIRenderer:
    """Thin CLI output renderer producing clean, deterministic plain text."""

    def __init__(
        self,
        *,
        verbose: bool = False,
        stream: TextIO | None = None,
        progress_stream: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._stream = stream
        self._progress_stream = progress_stream

    def _print(self, line: str = "") -> None:
        print(line, file=self._stream if self._stream is not None else sys.stdout)

    def heading(self, text: str) -> None:
        self._print(text)

    def kv(self, key: str, value: object) -> None:
        self._print(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._print(f"\n{title}")

    def warning(self, text: str) -> None:
        self._print(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Left-aligned columns sized to their widest cell; no output for zero rows."""

        if not rows:
            return
        width = len(headers)
        grid = [
            [str(row[index]) if index < len(row) else "" for index in range(width)]
            for row in (headers, *rows)
        ]
        sizes = [max(len(line[index]) for line in grid) for index in range(width)]

        if title:
            self.section(title)
        for position, line in enumerate(grid):
            cells = (cell.ljust(size) for cell, size in zip(line, sizes, strict=True))
            self._print("  " + "  ".join(cells).rstrip())
            if position == 0:
                self._print("  " + "  ".join("-" * size for size in sizes))

    def ok(self, label: str) -> None:
        self._print(f"  OK  {label}")

    def fail(self, label: str) -> None:
        self._print(f"  FAIL  {label}")

    def progress(self, message: str) -> None:
        """Progress line on stderr; used as the controller's progress callback."""

        stream = self._progress_stream if self._progress_stream is not None else sys.stderr
        print(message, file=stream, flush=True)

    def gate_result(self, result: GateResult) -> None:
        label = _STATUS_LABELS.get(result.status.value, result.status.value.upper())
        self._print(f"  [{label}] {result.job_id} ({result.duration_ms / 1000:.1f}s)")
        if result.message and (self.verbose or not result.passed):
            self._print(f"      {result.message}")
        for violation in result.violations:
            priority = violation.priority.value if violation.priority is not None else "-"
            self._print(f"      {violation.file}:{violation.line} [{priority}] {violation.issue}")
        if not result.passed:
            for path in result.artifact_paths:
                self._print(f"      log: {path}")

    def outcome(self, outcome: RunOutcome) -> None:
        """Render a terminal run outcome: per-gate lines, then the status summary."""

        if outcome.results:
            self.section("Results:")
            for result in outcome.results:
                self.gate_result(result)
        if outcome.diff_stats is not None and self.verbose:
            stats = outcome.diff_stats
            self.section("Diff:")
            self.kv("  base", stats.base_ref)
            self.kv(
                "  files",
                f"{stats.files_total} (new {stats.files_new}, modified "
                f"{stats.files_modified}, deleted {stats.files_deleted})",
            )
            self.kv("  lines", f"+{stats.lines_added} -{stats.lines_removed}")
        self.blank()
        self.kv("Status", outcome.status.value)
        if outcome.run_number is not None:
            self.kv("Run", outcome.run_number)
        if outcome.results:
            self.kv(
                "Counts",
                f"fixed={outcome.fixed_count} skipped={outcome.skipped_count} "
                f"failed={outcome.failed_count}",
            )
        if outcome.message:
            self.text(outcome.message)

    def blank(self) -> None:
        self._print()


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
