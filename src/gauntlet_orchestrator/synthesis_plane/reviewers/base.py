"""
gauntlet-orchestrator — reviewer capability and registry

File: src/gauntlet_orchestrator/synthesis_plane/reviewers/base.py

Purpose
- Uniform capability every AI reviewer tool implements: name, availability,
  health, and a single prompt+diff execution returning raw text.
- Lookup-table registry resolving reviewers by name, with per-invocation health caching.

Functional requirements
- ``missing`` means the tool is not installed; ``unhealthy`` means it is installed
  but cannot currently serve requests (for example an exhausted usage quota).
- Preference order is preserved when selecting healthy reviewers.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import structlog

from gauntlet_orchestrator.constants import DEFAULT_REVIEW_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

_USAGE_LIMIT_MARKERS: Final[tuple[str, ...]] = (
    "usage limit",
    "quota exceeded",
    "quota will reset",
    "credit balance is too low",
    "out of extra usage",
    "out of usage",
)


class HealthState(StrEnum):
    HEALTHY = "healthy"
    MISSING = "missing"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True, slots=True)
class HealthStatus:
    available: bool
    state: HealthState
    message: str | None = None

    @property
    def healthy(self) -> bool:
        return self.state is HealthState.HEALTHY


@dataclass(frozen=True, slots=True)
class ReviewRequest:
    """One reviewer call: instructions, the diff under review, and execution bounds."""

    prompt: str
    diff: str
    model: str | None = None
    timeout_seconds: float = DEFAULT_REVIEW_TIMEOUT_SECONDS
    cwd: str | None = None

    @property
    def content(self) -> str:
        return f"{self.prompt}\n\n--- DIFF ---\n{self.diff}"


@runtime_checkable
class ReviewerAdapter(Protocol):
    """Capability implemented once per external reviewer tool."""

    name: str

    def is_available(self) -> bool: ...

    async def check_health(self, *, check_usage_limit: bool = False) -> HealthStatus: ...

    async def execute(self, request: ReviewRequest) -> str: ...


def is_usage_limit(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _USAGE_LIMIT_MARKERS)


class ReviewerRegistry:
    """Name -> reviewer lookup table with cached health results."""

    def __init__(
        self,
        adapters: Iterable[ReviewerAdapter],
        *,
        logger: Any | None = None,
    ) -> None:
        self._adapters: dict[str, ReviewerAdapter] = {}
        for adapter in adapters:
            if adapter.name in self._adapters:
                raise ValueError(f"duplicate reviewer name: {adapter.name}")
            self._adapters[adapter.name] = adapter
        self._health: dict[str, HealthStatus] = {}
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def names(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def get(self, name: str) -> ReviewerAdapter | None:
        return self._adapters.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    async def health(self, name: str, *, check_usage_limit: bool = False) -> HealthStatus:
        cached = self._health.get(name)
        if cached is not None:
            return cached
        adapter = self._adapters.get(name)
        if adapter is None:
            status = HealthStatus(False, HealthState.MISSING, f"unknown reviewer {name!r}")
        else:
            status = await adapter.check_health(check_usage_limit=check_usage_limit)
        self._health[name] = status
        if not status.healthy:
            self._logger.warning(
                "reviewer_unhealthy",
                reviewer=name,
                state=status.state.value,
                detail=status.message,
            )
        return status

    async def healthy_adapters(
        self,
        preference: Sequence[str],
        *,
        check_usage_limit: bool = False,
    ) -> tuple[ReviewerAdapter, ...]:
        """Healthy reviewers in ``preference`` order (duplicates collapsed)."""

        selected: list[ReviewerAdapter] = []
        for name in dict.fromkeys(preference):
            status = await self.health(name, check_usage_limit=check_usage_limit)
            adapter = self._adapters.get(name)
            if status.healthy and adapter is not None:
                selected.append(adapter)
        return tuple(selected)

    def cached_health(self) -> Mapping[str, HealthStatus]:
        return dict(self._health)


__all__ = [
    "HealthState",
    "HealthStatus",
    "ReviewRequest",
    "ReviewerAdapter",
    "ReviewerRegistry",
    "is_usage_limit",
]
