"""
gauntlet-orchestrator — runtime config loader.

File: src/gauntlet_orchestrator/config/loader.py

Purpose
- Load the effective configuration from defaults, ``.gauntlet/config.yml``, env vars,
  and CLI overrides, plus the check and review gate definitions beside it.

What should be included in this file
- Precedence logic: CLI > env (GAUNTLET_) > file > defaults.
- YAML loading via ``yaml.safe_load``; review front matter delimited by ``---`` lines.
- Deterministic environment variable mapping and coercion.

Functional requirements
- I/O, YAML syntax, and env coercion failures raise ``ConfigLoadError``.
- Schema failures raise ``ConfigValidationError`` listing every issue at once.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

import yaml

from gauntlet_orchestrator.config.schema import (
    CheckGateConfig,
    GauntletConfig,
    IssueCollector,
    ReviewGateConfig,
    default_project_config,
    validate_check,
    validate_project,
    validate_references,
    validate_review,
)
from gauntlet_orchestrator.constants import (
    CHECKS_DIRNAME,
    CONFIG_FILENAME,
    GAUNTLET_DIR,
    REVIEWS_DIRNAME,
)

ENV_PREFIX: Final[str] = "GAUNTLET_"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_FRONT_MATTER_RE: Final[re.Pattern[str]] = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)
_CHECK_SUFFIXES: Final[tuple[str, ...]] = (".yml", ".yaml")


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, ...]
    value_type: Literal["str", "int", "bool"]


_ENV_BINDINGS: Final[tuple[_Binding, ...]] = (
    _Binding(("base_branch",), "str"),
    _Binding(("log_dir",), "str"),
    _Binding(("max_retries",), "int"),
    _Binding(("allow_parallel",), "bool"),
    _Binding(("rerun_new_issue_threshold",), "str"),
    _Binding(("cli", "check_usage_limit"), "bool"),
)


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def find_project_root(start: str | Path | None = None) -> Path:
    """Nearest ancestor of ``start`` (default: cwd) holding a ``.gauntlet`` directory."""

    origin = Path.cwd() if start is None else Path(start)
    origin = origin.expanduser().resolve()
    for candidate in (origin, *origin.parents):
        if (candidate / GAUNTLET_DIR).is_dir():
            return candidate
    raise ConfigLoadError(f"no {GAUNTLET_DIR}/ directory found at or above {origin}")


def load_config(
    project_root: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> GauntletConfig:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    root = find_project_root(project_root)
    gauntlet_dir = root / GAUNTLET_DIR
    env_map = dict(os.environ if environ is None else environ)

    file_payload = _load_yaml_mapping(gauntlet_dir / CONFIG_FILENAME, required=True)
    merged = merge_config(default_project_config(), file_payload)
    merged = merge_config(merged, _collect_env_overrides(env_map))
    merged = merge_config(merged, _materialize_cli_overrides(dict(cli_overrides or {})))

    issues = IssueCollector()
    project = validate_project(merged, issues)
    checks = _load_checks(gauntlet_dir / CHECKS_DIRNAME, issues)
    reviews = _load_reviews(gauntlet_dir / REVIEWS_DIRNAME, issues)
    validate_references(project, checks, reviews, issues)
    issues.raise_if_any()

    return GauntletConfig(project_root=root, project=project, checks=checks, reviews=reviews)


def split_front_matter(text: str, *, source: str = "<review>") -> tuple[dict[str, Any], str]:
    """Split optional YAML front matter from a markdown document."""

    match = _FRONT_MATTER_RE.match(text)
    if match is None:
        return {}, text
    try:
        parsed = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"invalid YAML front matter in {source}: {exc}") from exc
    if parsed is None:
        parsed = {}
    if not isinstance(parsed, dict):
        raise ConfigLoadError(f"front matter must be a mapping: {source}")
    return parsed, text[match.end() :]


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; lists are replaced, not merged."""

    merged: dict[str, Any] = {}
    for key, value in base.items():
        merged[key] = merge_config(value, {}) if isinstance(value, Mapping) else value
    for key, value in overlay.items():
        existing = merged.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            merged[key] = merge_config(existing, value)
        else:
            merged[key] = value
    return merged


def _load_yaml_mapping(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            parsed = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigLoadError(f"config root must be a mapping: {path}")
    return parsed


def _load_checks(directory: Path, issues: IssueCollector) -> dict[str, CheckGateConfig]:
    checks: dict[str, CheckGateConfig] = {}
    if not directory.is_dir():
        return checks
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix not in _CHECK_SUFFIXES:
            continue
        label = f"checks/{path.name}"
        check = validate_check(
            _load_yaml_mapping(path, required=True),
            default_name=path.stem,
            path=label,
            issues=issues,
        )
        if check is None:
            continue
        if check.name in checks:
            issues.add(label, f"duplicate check name {check.name!r}")
            continue
        checks[check.name] = check
    return checks


def _load_reviews(directory: Path, issues: IssueCollector) -> dict[str, ReviewGateConfig]:
    reviews: dict[str, ReviewGateConfig] = {}
    if not directory.is_dir():
        return reviews
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix != ".md":
            continue
        label = f"reviews/{path.name}"
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigLoadError(f"unable to read review file {path}: {exc}") from exc
        front_matter, body = split_front_matter(text, source=label)
        review = validate_review(front_matter, body, name=path.stem, path=label, issues=issues)
        if review is None:
            continue
        if review.name in reviews:
            issues.add(label, f"duplicate review name {review.name!r}")
            continue
        reviews[review.name] = review
    return reviews


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for binding in _ENV_BINDINGS:
        env_name = _env_name_for_path(binding.path)
        raw = environ.get(env_name)
        if raw is None:
            continue
        value = _coerce_env(raw, binding.value_type, env_name, binding.path)
        _set_nested(overrides, binding.path, value)
    return overrides


def _coerce_env(
    raw: str,
    value_type: Literal["str", "int", "bool"],
    env_name: str,
    path: tuple[str, ...],
) -> object:
    value = raw.strip()
    if value_type == "str":
        return value
    if value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(path)} must be an integer") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(
        f"{env_name} -> {'.'.join(path)} must be a boolean (true/false/1/0/yes/no/on/off)"
    )


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _set_nested(payload, path, value)
    return payload


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


def _env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


__all__ = [
    "ConfigLoadError",
    "ENV_PREFIX",
    "find_project_root",
    "load_config",
    "merge_config",
    "split_front_matter",
]
