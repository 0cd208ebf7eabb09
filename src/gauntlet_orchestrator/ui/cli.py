"""Command-line interface router for gauntlet-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

from gauntlet_orchestrator.config.loader import load_config
from gauntlet_orchestrator.control_plane.controller import GauntletController, RunOptions
from gauntlet_orchestrator.domain.errors import LockConflictError
from gauntlet_orchestrator.domain.models import JobKind, RunOutcome, RunStatus
from gauntlet_orchestrator.main import ExitCode
from gauntlet_orchestrator.observability.logging import (
    LoggingConfig,
    setup_structured_logging,
    shutdown_logging,
)
from gauntlet_orchestrator.persistence.artifacts import ArtifactDirectory
from gauntlet_orchestrator.persistence.recovery import reconstruct_history, recover
from gauntlet_orchestrator.synthesis_plane.reviewers.tool_adapter import build_default_registry
from gauntlet_orchestrator.ui.render import CLIRenderer, create_renderer

_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_EXIT_CODES: Final[Mapping[RunStatus, ExitCode]] = {
    RunStatus.PASSED: ExitCode.SUCCESS,
    RunStatus.PASSED_WITH_WARNINGS: ExitCode.SUCCESS,
    RunStatus.NO_CHANGES: ExitCode.SUCCESS,
    RunStatus.NO_APPLICABLE_GATES: ExitCode.SUCCESS,
    RunStatus.FAILED: ExitCode.GATES_FAILED,
    RunStatus.RETRY_LIMIT_EXCEEDED: ExitCode.GATES_FAILED,
    RunStatus.LOCK_CONFLICT: ExitCode.GATES_FAILED,
    RunStatus.ERROR: ExitCode.INTERNAL_ERROR,
}


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


def exit_code_for(outcome: RunOutcome) -> int:
    if outcome.status is RunStatus.ERROR and outcome.config_error:
        return int(ExitCode.CONFIG_ERROR)
    return int(_EXIT_CODES[outcome.status])


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="gauntlet",
        description=(
            "gauntlet-orchestrator: iterative quality gates for agent-written changes.\n\n"
            "Common workflows:\n"
            "  gauntlet run                 Run every applicable check and review\n"
            "  gauntlet detect              Show changed files and the jobs they trigger\n"
            "  gauntlet status              Summarize the current iteration's artifacts\n"
            "  gauntlet clean               Archive logs into previous/\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--project-root",
        default=None,
        help="Project root (default: nearest ancestor holding a .gauntlet directory).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--log-file",
        default=None,
        help="Write structured JSON-lines process logs to this file.",
    )
    common.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        default=None,
        help="Process log level (default: WARNING, or INFO with --log-file).",
    )

    changes = argparse.ArgumentParser(add_help=False)
    changes.add_argument(
        "--base-branch",
        "-b",
        default=None,
        help="Override the base branch used for change detection.",
    )
    changes.add_argument(
        "--gate",
        "-g",
        default=None,
        help="Only run gates whose name contains this text.",
    )
    source = changes.add_mutually_exclusive_group()
    source.add_argument("--commit", "-c", default=None, help="Review a single commit.")
    source.add_argument(
        "--uncommitted",
        "-u",
        action="store_true",
        default=False,
        help="Review staged, unstaged and untracked changes only.",
    )
    changes.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run / check / review ------------------------------------------------
    for name, kind, summary in (
        ("run", None, "Run all applicable checks and reviews"),
        ("check", JobKind.CHECK, "Run applicable check gates only"),
        ("review", JobKind.REVIEW, "Run applicable review gates only"),
    ):
        command_parser = subparsers.add_parser(
            name,
            parents=[common, changes],
            help=summary,
            description=(
                f"{summary}.\n\n"
                "Examples:\n"
                f"  gauntlet {name}\n"
                f"  gauntlet {name} --uncommitted\n"
                f"  gauntlet {name} --gate lint --base-branch origin/develop\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        command_parser.set_defaults(handler=_cmd_run, kind=kind)

    # detect ---------------------------------------------------------------
    detect_parser = subparsers.add_parser(
        "detect",
        parents=[common, changes],
        help="Show changed files and the jobs they would trigger",
    )
    detect_parser.set_defaults(handler=_cmd_detect, kind=None)

    # list -----------------------------------------------------------------
    list_parser = subparsers.add_parser(
        "list", parents=[common], help="List configured gates and entry points"
    )
    list_parser.set_defaults(handler=_cmd_list)

    # health ---------------------------------------------------------------
    health_parser = subparsers.add_parser(
        "health", parents=[common], help="Validate config and check reviewer health"
    )
    health_parser.set_defaults(handler=_cmd_health)

    # validate -------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate", parents=[common], help="Validate .gauntlet configuration"
    )
    validate_parser.set_defaults(handler=_cmd_validate)

    # clean ----------------------------------------------------------------
    clean_parser = subparsers.add_parser(
        "clean", parents=[common], help="Archive current logs into previous/"
    )
    clean_parser.set_defaults(handler=_cmd_clean)

    # status ---------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Summarize current artifacts and iteration history",
    )
    status_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    status_parser.set_defaults(handler=_cmd_status)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    _configure_logging(namespace)
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        shutdown_logging()
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    controller = GauntletController(
        args.project_root,
        progress=None if args.json else renderer.progress,
    )
    outcome = controller.run(_run_options(args))
    if args.json:
        _emit_json(outcome.to_dict())
    else:
        renderer.outcome(outcome)
    return exit_code_for(outcome)


def _cmd_detect(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    controller = GauntletController(
        args.project_root,
        progress=None if args.json else renderer.progress,
    )
    plan = controller.detect(_run_options(args))
    if args.json:
        _emit_json(
            {
                "base_branch": plan.base_branch,
                "mode": plan.mode.value,
                "rerun": plan.rerun,
                "changed_files": list(plan.changed_files),
                "jobs": [job.id for job in plan.jobs],
                "warnings": list(plan.warnings),
            }
        )
        return int(ExitCode.SUCCESS)

    renderer.kv("Base branch", plan.base_branch)
    renderer.kv("Diff mode", plan.mode.value)
    renderer.kv("Verification iteration", "yes" if plan.rerun else "no")
    for warning in plan.warnings:
        renderer.warning(warning)
    renderer.section(f"Changed files ({len(plan.changed_files)}):")
    renderer.items(plan.changed_files)
    if not plan.changed_files:
        renderer.text("  (none)")
    renderer.section(f"Jobs ({len(plan.jobs)}):")
    renderer.items([job.id for job in plan.jobs])
    if plan.changed_files and not plan.jobs:
        renderer.text("  (no applicable gates)")
    return int(ExitCode.SUCCESS)


def _cmd_list(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    config = load_config(args.project_root)

    renderer.table(
        ("CHECK", "COMMAND", "PARALLEL", "FAIL FAST"),
        [
            (name, check.command, _yes_no(check.parallel), _yes_no(check.fail_fast))
            for name, check in sorted(config.checks.items())
        ],
        title="Checks:",
    )
    renderer.table(
        ("REVIEW", "REVIEWERS", "NUM REVIEWS"),
        [
            (name, ", ".join(config.reviewer_preference(review)), str(review.num_reviews))
            for name, review in sorted(config.reviews.items())
        ],
        title="Reviews:",
    )
    renderer.table(
        ("ENTRY POINT", "CHECKS", "REVIEWS"),
        [
            (entry.path, ", ".join(entry.checks) or "-", ", ".join(entry.reviews) or "-")
            for entry in config.project.entry_points
        ],
        title="Entry points:",
    )
    return int(ExitCode.SUCCESS)


def _cmd_health(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    config = load_config(args.project_root)
    renderer.ok(f"config ({config.project_root})")

    registry = build_default_registry(config.project_root)
    check_usage_limit = config.project.cli.check_usage_limit

    async def _probe() -> list[tuple[str, bool, str]]:
        rows: list[tuple[str, bool, str]] = []
        for name in registry.names():
            status = await registry.health(name, check_usage_limit=check_usage_limit)
            detail = status.state.value
            if status.message:
                detail = f"{detail}: {status.message}"
            rows.append((name, status.healthy, detail))
        return rows

    healthy = 0
    for name, is_healthy, detail in asyncio.run(_probe()):
        if is_healthy:
            healthy += 1
            renderer.ok(f"{name} ({detail})")
        else:
            renderer.fail(f"{name} ({detail})")

    if config.reviews and healthy == 0:
        renderer.warning("review gates are configured but no reviewer is healthy")
        return int(ExitCode.REVIEWER_ERROR)
    return int(ExitCode.SUCCESS)


def _cmd_validate(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    config = load_config(args.project_root)
    renderer.ok(
        f"{len(config.checks)} check(s), {len(config.reviews)} review(s), "
        f"{len(config.project.entry_points)} entry point(s)"
    )
    return int(ExitCode.SUCCESS)


def _cmd_clean(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    config = load_config(args.project_root)
    artifacts = ArtifactDirectory(config.log_dir)
    try:
        with artifacts.lock():
            moved = artifacts.clean()
    except LockConflictError as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.GATES_FAILED)) from exc
    renderer.text(f"Logs archived successfully ({moved} file(s) moved to previous/).")
    return int(ExitCode.SUCCESS)


def _cmd_status(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    config = load_config(args.project_root)
    artifacts = ArtifactDirectory(config.log_dir)
    recovered = recover(artifacts)
    history = reconstruct_history(artifacts)
    max_allowed = config.project.max_retries + 1
    run_number = artifacts.next_run_number() - 1

    if args.json:
        _emit_json(
            {
                "log_dir": str(config.log_dir),
                "last_run": run_number or None,
                "max_runs": max_allowed,
                "failed_jobs": sorted({*recovered.failures_by_job, *recovered.failed_checks}),
                "violations": recovered.violation_count,
                "skipped": len(recovered.skipped),
                "history": [
                    {
                        "iteration": item.iteration,
                        "fixed": [fixed.details for fixed in item.fixed],
                        "skipped": len(item.skipped),
                    }
                    for item in history
                ],
            }
        )
        return int(ExitCode.SUCCESS)

    renderer.kv("Log directory", config.log_dir)
    if run_number == 0:
        renderer.text("No artifacts in the current iteration.")
        return int(ExitCode.SUCCESS)
    renderer.kv("Last run", f"{run_number} of {max_allowed}")

    failing = sorted({*recovered.failures_by_job, *recovered.failed_checks})
    renderer.section(f"Failing gates ({len(failing)}):")
    renderer.items(failing)
    if recovered.violation_count:
        renderer.kv("Outstanding violations", recovered.violation_count)
    if recovered.skipped:
        renderer.kv("Skipped findings", len(recovered.skipped))

    renderer.table(
        ("RUN", "FIXED", "SKIPPED"),
        [(str(item.iteration), str(len(item.fixed)), str(len(item.skipped))) for item in history],
        title="History:",
    )
    if args.verbose:
        for item in history:
            for fixed in item.fixed:
                adapter = f" ({fixed.adapter})" if fixed.adapter else ""
                label = f"{fixed.job_prefix}{adapter}"
                renderer.text(f"  run {item.iteration}: {label} {fixed.details}")
    return int(ExitCode.SUCCESS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configure_logging(args: argparse.Namespace) -> None:
    log_file = getattr(args, "log_file", None)
    level = getattr(args, "log_level", None) or ("INFO" if log_file else "WARNING")
    setup_structured_logging(
        LoggingConfig(log_path=log_file, level=level, log_to_stderr=log_file is None)
    )


def _run_options(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        base_branch=args.base_branch,
        gate_filter=args.gate,
        commit=args.commit,
        uncommitted=bool(args.uncommitted),
        kind=args.kind,
    )


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=bool(getattr(args, "verbose", False)))


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


__all__ = ["CLIError", "build_parser", "exit_code_for", "main", "run_cli"]
