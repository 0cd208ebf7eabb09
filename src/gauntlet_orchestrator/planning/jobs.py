"""Job generation from expanded entry points."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

import structlog

from gauntlet_orchestrator.domain.models import Job, JobKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from gauntlet_orchestrator.config.schema import CheckGateConfig, GauntletConfig
    from gauntlet_orchestrator.planning.entry_points import ExpandedEntryPoint

# ``working_directory: entrypoint`` pins a check to the expanded entry-point path.
ENTRYPOINT_WORKING_DIRECTORY: Final[str] = "entrypoint"


def check_job_id(working_directory: str, name: str) -> str:
    return f"check:{working_directory}:{name}"


def review_job_id(entry_point: str, name: str) -> str:
    return f"review:{entry_point}:{name}"


def generate_jobs(
    config: GauntletConfig,
    entry_points: Sequence[ExpandedEntryPoint],
    *,
    ci: bool,
    logger: Any | None = None,
) -> list[Job]:
    """Build the job list in declaration order.

    Checks are de-duplicated per ``(name, working directory)``; gates disabled for
    the current environment (CI or local) are dropped.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    jobs: list[Job] = []
    seen_checks: set[tuple[str, str]] = set()

    for entry in entry_points:
        for name in entry.config.checks:
            check = config.checks.get(name)
            if check is None:
                log.warning("unknown_check_skipped", check=name, entry_point=entry.path)
                continue
            if not _enabled(check.run_in_ci, check.run_locally, ci=ci):
                continue
            working_directory = _check_working_directory(check, entry.path)
            if (name, working_directory) in seen_checks:
                continue
            seen_checks.add((name, working_directory))
            jobs.append(
                Job(
                    id=check_job_id(working_directory, name),
                    kind=JobKind.CHECK,
                    name=name,
                    entry_point=entry.path,
                    working_directory=working_directory,
                    gate_config=check,
                )
            )

        for name in entry.config.reviews:
            review = config.reviews.get(name)
            if review is None:
                log.warning("unknown_review_skipped", review=name, entry_point=entry.path)
                continue
            if not _enabled(review.run_in_ci, review.run_locally, ci=ci):
                continue
            jobs.append(
                Job(
                    id=review_job_id(entry.path, name),
                    kind=JobKind.REVIEW,
                    name=name,
                    entry_point=entry.path,
                    working_directory=entry.path,
                    gate_config=review,
                )
            )

    return jobs


def filter_jobs(
    jobs: Iterable[Job],
    *,
    gate_filter: str | None = None,
    kind: JobKind | None = None,
) -> list[Job]:
    """Keep jobs whose name contains ``gate_filter`` and, if given, of ``kind``."""

    return [
        job
        for job in jobs
        if (not gate_filter or gate_filter in job.name) and (kind is None or job.kind is kind)
    ]


def _enabled(run_in_ci: bool, run_locally: bool, *, ci: bool) -> bool:
    return run_in_ci if ci else run_locally


def _check_working_directory(check: CheckGateConfig, entry_point: str) -> str:
    configured = check.working_directory
    if not configured or configured == ENTRYPOINT_WORKING_DIRECTORY:
        return entry_point
    return configured


__all__ = [
    "ENTRYPOINT_WORKING_DIRECTORY",
    "check_job_id",
    "filter_jobs",
    "generate_jobs",
    "review_job_id",
]
