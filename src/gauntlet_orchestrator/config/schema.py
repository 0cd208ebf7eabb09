"""
gauntlet-orchestrator — configuration schema and validation.

File: src/gauntlet_orchestrator/config/schema.py

Purpose
- Define configuration defaults and strict validation rules for the project
  settings, check gates, and review gates found under ``.gauntlet/``.

Functional requirements
- Validate payloads and return structured errors (field path + message).
- Reject unknown keys, unknown gate references, and unregistered reviewer names.
- ``fail_fast`` is only legal on sequential (non-parallel) checks.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

from gauntlet_orchestrator.constants import (
    DEFAULT_BASE_BRANCH,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_RETRIES,
    DEFAULT_NUM_REVIEWS,
    DEFAULT_RERUN_THRESHOLD,
    DEFAULT_REVIEWER_PREFERENCE,
    PRIORITY_ORDER,
)
from gauntlet_orchestrator.domain.models import Priority

KNOWN_REVIEWERS: Final[tuple[str, ...]] = DEFAULT_REVIEWER_PREFERENCE

DEFAULT_PROJECT_CONFIG: Final[dict[str, Any]] = {
    "base_branch": DEFAULT_BASE_BRANCH,
    "log_dir": DEFAULT_LOG_DIR,
    "max_retries": DEFAULT_MAX_RETRIES,
    "allow_parallel": True,
    "rerun_new_issue_threshold": DEFAULT_RERUN_THRESHOLD,
    "cli": {
        "default_preference": list(DEFAULT_REVIEWER_PREFERENCE),
        "check_usage_limit": False,
    },
    "entry_points": [],
}

_PROJECT_KEYS: Final[frozenset[str]] = frozenset(DEFAULT_PROJECT_CONFIG)
_CLI_KEYS: Final[frozenset[str]] = frozenset({"default_preference", "check_usage_limit"})
_ENTRY_POINT_KEYS: Final[frozenset[str]] = frozenset({"path", "checks", "reviews", "exclude"})
_CHECK_KEYS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "command",
        "working_directory",
        "parallel",
        "run_in_ci",
        "run_locally",
        "timeout",
        "fail_fast",
    }
)
_REVIEW_KEYS: Final[frozenset[str]] = frozenset(
    {
        "cli_preference",
        "num_reviews",
        "model",
        "timeout",
        "parallel",
        "run_in_ci",
        "run_locally",
    }
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)

    def raise_if_any(self) -> None:
        if self._items:
            raise ConfigValidationError(self._items)


@dataclass(frozen=True, slots=True)
class CheckGateConfig:
    """Deterministic command gate; passes on exit code 0."""

    name: str
    command: str
    working_directory: str | None = None
    parallel: bool = False
    run_in_ci: bool = True
    run_locally: bool = True
    timeout: float | None = None
    fail_fast: bool = False


@dataclass(frozen=True, slots=True)
class ReviewGateConfig:
    """AI review gate; ``prompt`` is the markdown body of its review file."""

    name: str
    prompt: str
    cli_preference: tuple[str, ...] | None = None
    num_reviews: int = DEFAULT_NUM_REVIEWS
    model: str | None = None
    timeout: float | None = None
    parallel: bool = True
    run_in_ci: bool = True
    run_locally: bool = True


@dataclass(frozen=True, slots=True)
class EntryPointConfig:
    path: str
    checks: tuple[str, ...] = ()
    reviews: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CLIConfig:
    default_preference: tuple[str, ...] = DEFAULT_REVIEWER_PREFERENCE
    check_usage_limit: bool = False


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    base_branch: str = DEFAULT_BASE_BRANCH
    log_dir: str = DEFAULT_LOG_DIR
    max_retries: int = DEFAULT_MAX_RETRIES
    allow_parallel: bool = True
    rerun_new_issue_threshold: Priority = Priority(DEFAULT_RERUN_THRESHOLD)
    cli: CLIConfig = field(default_factory=CLIConfig)
    entry_points: tuple[EntryPointConfig, ...] = ()


@dataclass(frozen=True, slots=True)
class GauntletConfig:
    """Fully validated configuration for one project root."""

    project_root: Path
    project: ProjectConfig
    checks: Mapping[str, CheckGateConfig] = field(default_factory=dict)
    reviews: Mapping[str, ReviewGateConfig] = field(default_factory=dict)

    @property
    def log_dir(self) -> Path:
        candidate = Path(self.project.log_dir)
        if candidate.is_absolute():
            return candidate
        return self.project_root / candidate

    def reviewer_preference(self, review: ReviewGateConfig) -> tuple[str, ...]:
        return review.cli_preference or self.project.cli.default_preference


def default_project_config() -> dict[str, Any]:
    """Return a deep copy of the built-in project defaults."""

    return copy.deepcopy(DEFAULT_PROJECT_CONFIG)


def validate_project(payload: Mapping[str, object], issues: IssueCollector) -> ProjectConfig:
    path = "config"
    _reject_unknown_keys(payload, _PROJECT_KEYS, path, issues)
    defaults = ProjectConfig()

    cli_payload = payload.get("cli", {})
    cli = CLIConfig()
    if isinstance(cli_payload, Mapping):
        _reject_unknown_keys(cli_payload, _CLI_KEYS, f"{path}.cli", issues)
        preference = _as_reviewer_list(
            cli_payload.get("default_preference", list(cli.default_preference)),
            f"{path}.cli.default_preference",
            issues,
        )
        cli = CLIConfig(
            default_preference=preference or cli.default_preference,
            check_usage_limit=_as_bool(
                cli_payload.get("check_usage_limit", False),
                f"{path}.cli.check_usage_limit",
                issues,
            )
            or False,
        )
    else:
        issues.add(f"{path}.cli", f"expected object, got {type(cli_payload).__name__}")

    threshold = _as_enum(
        payload.get("rerun_new_issue_threshold", DEFAULT_RERUN_THRESHOLD),
        f"{path}.rerun_new_issue_threshold",
        issues,
        allowed_values=PRIORITY_ORDER,
    )
    max_retries = _as_int(
        payload.get("max_retries", defaults.max_retries),
        f"{path}.max_retries",
        issues,
        minimum=0,
    )
    allow_parallel = _as_bool(
        payload.get("allow_parallel", defaults.allow_parallel),
        f"{path}.allow_parallel",
        issues,
    )

    base_branch = _as_str(
        payload.get("base_branch", defaults.base_branch), f"{path}.base_branch", issues
    )
    log_dir = _as_path_text(payload.get("log_dir", defaults.log_dir), f"{path}.log_dir", issues)
    entry_points = _validate_entry_points(
        payload.get("entry_points"), f"{path}.entry_points", issues
    )

    return ProjectConfig(
        base_branch=base_branch or defaults.base_branch,
        log_dir=log_dir or defaults.log_dir,
        max_retries=defaults.max_retries if max_retries is None else max_retries,
        allow_parallel=defaults.allow_parallel if allow_parallel is None else allow_parallel,
        rerun_new_issue_threshold=Priority(threshold or DEFAULT_RERUN_THRESHOLD),
        cli=cli,
        entry_points=entry_points,
    )


def validate_check(
    payload: Mapping[str, object],
    *,
    default_name: str,
    path: str,
    issues: IssueCollector,
) -> CheckGateConfig | None:
    _reject_unknown_keys(payload, _CHECK_KEYS, path, issues)
    if "command" not in payload:
        issues.add(f"{path}.command", "missing required field")
        return None
    name = _as_str(payload.get("name", default_name), f"{path}.name", issues)
    command = _as_str(payload["command"], f"{path}.command", issues)
    parallel = _as_bool(payload.get("parallel", False), f"{path}.parallel", issues)
    fail_fast = _as_bool(payload.get("fail_fast", False), f"{path}.fail_fast", issues)
    working_directory = payload.get("working_directory")
    if working_directory is not None:
        working_directory = _as_path_text(working_directory, f"{path}.working_directory", issues)
    timeout = _optional_timeout(payload.get("timeout"), f"{path}.timeout", issues)
    run_in_ci = _as_bool(payload.get("run_in_ci", True), f"{path}.run_in_ci", issues)
    run_locally = _as_bool(payload.get("run_locally", True), f"{path}.run_locally", issues)

    if parallel and fail_fast:
        issues.add(f"{path}.fail_fast", "fail_fast can only be used when parallel is false")
    if name is None or command is None:
        return None
    return CheckGateConfig(
        name=name,
        command=command,
        working_directory=working_directory if isinstance(working_directory, str) else None,
        parallel=bool(parallel),
        run_in_ci=run_in_ci is not False,
        run_locally=run_locally is not False,
        timeout=timeout,
        fail_fast=bool(fail_fast),
    )


def validate_review(
    front_matter: Mapping[str, object],
    body: str,
    *,
    name: str,
    path: str,
    issues: IssueCollector,
) -> ReviewGateConfig | None:
    _reject_unknown_keys(front_matter, _REVIEW_KEYS, path, issues)
    if not body.strip():
        issues.add(f"{path}.prompt", "review prompt body must not be empty")
    preference: tuple[str, ...] | None = None
    if "cli_preference" in front_matter:
        preference = _as_reviewer_list(
            front_matter["cli_preference"], f"{path}.cli_preference", issues
        )
    num_reviews = _as_int(
        front_matter.get("num_reviews", DEFAULT_NUM_REVIEWS),
        f"{path}.num_reviews",
        issues,
        minimum=1,
    )
    model = front_matter.get("model")
    if model is not None:
        model = _as_str(model, f"{path}.model", issues)
    parallel = _as_bool(front_matter.get("parallel", True), f"{path}.parallel", issues)
    run_in_ci = _as_bool(front_matter.get("run_in_ci", True), f"{path}.run_in_ci", issues)
    run_locally = _as_bool(front_matter.get("run_locally", True), f"{path}.run_locally", issues)
    return ReviewGateConfig(
        name=name,
        prompt=body.strip(),
        cli_preference=preference,
        num_reviews=num_reviews or DEFAULT_NUM_REVIEWS,
        model=model if isinstance(model, str) else None,
        timeout=_optional_timeout(front_matter.get("timeout"), f"{path}.timeout", issues),
        parallel=parallel is not False,
        run_in_ci=run_in_ci is not False,
        run_locally=run_locally is not False,
    )


def validate_references(
    project: ProjectConfig,
    checks: Mapping[str, CheckGateConfig],
    reviews: Mapping[str, ReviewGateConfig],
    issues: IssueCollector,
) -> None:
    """Every entry point must reference configured gates."""

    if not project.entry_points:
        issues.add("config.entry_points", "at least one entry point is required")
    for index, entry in enumerate(project.entry_points):
        path = f"config.entry_points[{index}]"
        for name in entry.checks:
            if name not in checks:
                issues.add(f"{path}.checks", f"unknown check {name!r}")
        for name in entry.reviews:
            if name not in reviews:
                issues.add(f"{path}.reviews", f"unknown review {name!r}")


def _validate_entry_points(
    value: object, path: str, issues: IssueCollector
) -> tuple[EntryPointConfig, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return ()
    entries: list[EntryPointConfig] = []
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if not isinstance(item, Mapping):
            issues.add(item_path, f"expected object, got {type(item).__name__}")
            continue
        _reject_unknown_keys(item, _ENTRY_POINT_KEYS, item_path, issues)
        if "path" not in item:
            issues.add(f"{item_path}.path", "missing required field")
            continue
        entry_path = _as_path_text(item["path"], f"{item_path}.path", issues)
        if entry_path is None:
            continue
        entries.append(
            EntryPointConfig(
                path=entry_path,
                checks=_as_str_list(item.get("checks", []), f"{item_path}.checks", issues),
                reviews=_as_str_list(item.get("reviews", []), f"{item_path}.reviews", issues),
                exclude=_as_str_list(item.get("exclude", []), f"{item_path}.exclude", issues),
            )
        )
    return tuple(entries)


def _as_reviewer_list(value: object, path: str, issues: IssueCollector) -> tuple[str, ...]:
    names = _as_str_list(value, path, issues)
    if isinstance(value, list) and not names:
        issues.add(path, "must list at least one reviewer")
    for name in names:
        if name not in KNOWN_REVIEWERS:
            expected = ", ".join(KNOWN_REVIEWERS)
            issues.add(path, f"unknown reviewer {name!r}; expected one of: {expected}")
    return names


def _as_str_list(value: object, path: str, issues: IssueCollector) -> tuple[str, ...]:
    if not isinstance(value, list):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return ()
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return tuple(out)


def _optional_timeout(value: object, path: str, issues: IssueCollector) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed) or parsed <= 0:
        issues.add(path, "must be a positive number of seconds")
        return None
    return parsed


def _as_str(value: object, path: str, issues: IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    parsed = parsed.lower()
    if parsed not in allowed_values:
        expected = ", ".join(allowed_values)
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: frozenset[str],
    path: str,
    issues: IssueCollector,
) -> None:
    for key in sorted(str(item) for item in payload):
        if key not in allowed:
            issues.add(f"{path}.{key}", "unknown field")


__all__ = [
    "DEFAULT_PROJECT_CONFIG",
    "KNOWN_REVIEWERS",
    "CLIConfig",
    "CheckGateConfig",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "EntryPointConfig",
    "GauntletConfig",
    "IssueCollector",
    "ProjectConfig",
    "ReviewGateConfig",
    "default_project_config",
    "validate_check",
    "validate_project",
    "validate_references",
    "validate_review",
]
