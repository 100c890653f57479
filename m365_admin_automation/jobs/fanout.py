"""
Per-item fan-out with bounded concurrency and isolated failures.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from ..config import MAX_CONCURRENT_REQUESTS

logger = logging.getLogger("m365_admin_automation.jobs.fanout")

T = TypeVar("T")


@dataclass
class ItemResult:
    name: str
    succeeded: bool
    value: Any = None
    error: str = ""


@dataclass
class BatchSummary:
    """Per-item results in listing order plus success/failure tallies."""
    results: list[ItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[ItemResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> list[ItemResult]:
        return [r for r in self.results if not r.succeeded]

    def to_dict(self) -> dict:
        return {
            "total": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "failures": [{"name": r.name, "error": r.error} for r in self.failed],
        }


async def run_for_each(
    items: Iterable[T],
    action: Callable[[T], Awaitable[Any]],
    name_of: Optional[Callable[[T], str]] = None,
    concurrency: int = MAX_CONCURRENT_REQUESTS,
) -> BatchSummary:
    """
    Run ``action`` for every item, at most ``concurrency`` at a time.
    An item's exception is logged and recorded; the others keep running.
    ``concurrency=1`` processes strictly in listing order.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    name_of = name_of or str
    semaphore = asyncio.Semaphore(concurrency)

    async def _run_one(item: T) -> ItemResult:
        name = name_of(item)
        async with semaphore:
            try:
                value = await action(item)
            except Exception as e:
                logger.warning(f"[{name}] failed: {type(e).__name__}: {e}")
                return ItemResult(name=name, succeeded=False, error=f"{type(e).__name__}: {e}")
        logger.debug(f"[{name}] done")
        return ItemResult(name=name, succeeded=True, value=value)

    results = await asyncio.gather(*(_run_one(item) for item in items))
    summary = BatchSummary(results=list(results))
    logger.info(
        f"Processed {len(summary.results)} items: "
        f"{len(summary.succeeded)} succeeded, {len(summary.failed)} failed"
    )
    return summary
