"""Async helpers shared by the runner, review dispatch and reviewer adapters."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

T = TypeVar("T")


class CancellationToken:
    """One-way latch a job lane checks before starting its next job."""

    __slots__ = ("_reason", "is_cancelled")

    def __init__(self) -> None:
        self.is_cancelled = False
        self._reason: str | None = None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        # First reason wins; later cancels only confirm the latch.
        if not self.is_cancelled:
            self.is_cancelled = True
            self._reason = reason


async def gather_all(awaitables: Iterable[Awaitable[T]]) -> list[T]:
    """Await everything concurrently; results keep submission order.

    A failure in one awaitable never cancels its siblings. Once all of them have
    settled, the first failure (in submission order) is re-raised.
    """

    tasks = [asyncio.ensure_future(item) for item in awaitables]
    if not tasks:
        return []
    try:
        settled = await asyncio.gather(*tasks, return_exceptions=True)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failure = next((item for item in settled if isinstance(item, BaseException)), None)
    if failure is not None:
        raise failure
    return list(settled)  # type: ignore[arg-type]


async def run_with_timeout(awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """Await ``awaitable``; cancel it and raise ``TimeoutError`` past the deadline."""

    if timeout_seconds <= 0:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise ValueError("timeout_seconds must be > 0")
    try:
        async with asyncio.timeout(timeout_seconds):
            return await awaitable
    except TimeoutError:
        raise TimeoutError(f"operation timed out after {timeout_seconds:g}s") from None


__all__ = ["CancellationToken", "gather_all", "run_with_timeout"]
