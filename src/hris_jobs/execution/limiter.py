"""Concurrency Limiter: bounded fan-out for per-item sub-tasks.

WHY
───
Payroll calculates hundreds of employees and batch email sends hundreds of
messages. Each item is independent I/O-bound work, but the store and the mail
transport must not see unbounded parallelism, and one bad item must never
abort its siblings.

ARCHITECTURE
────────────
::

    ConcurrencyLimiter.for_each(items, limit, fn)
      │
      ├── chunk 1: items[0:limit]        ─ asyncio.gather (concurrent)
      ├── chunk 2: items[limit:2*limit]  ─ starts after chunk 1 finishes
      └── ...
      ▼
    list[BatchItemResult]   ─ same length and order as ``items``

    Per-item exceptions are captured as failed results, never re-raised.

The limiter holds no mutable state; the limit is passed explicitly by every
call site.

Example::

    limiter = ConcurrencyLimiter()
    results = await limiter.for_each(employees, 10, calculate_one, item_id=lambda e: e["id"])
    summary = limiter.summarize(results)
    print(summary.success_count, summary.failed_count)
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from hris_jobs.core.errors import ConfigError, error_message
from hris_jobs.core.logging import get_logger
from hris_jobs.execution.models import BatchItemResult, BatchSummary

logger = get_logger(__name__)

T = TypeVar("T")


def _default_item_id(item: Any, index: int) -> str:
    if isinstance(item, dict):
        for key in ("id", "itemId", "employee_id", "to"):
            if item.get(key) is not None:
                return str(item[key])
    return str(index)


class ConcurrencyLimiter:
    """Runs a function over items in sequential chunks of concurrent calls."""

    async def for_each(
        self,
        items: Sequence[T],
        limit: int,
        fn: Callable[[T], Any],
        *,
        item_id: Callable[[T], str] | None = None,
    ) -> list[BatchItemResult]:
        """Apply ``fn`` to every item with at most ``limit`` in flight.

        ``fn`` may be sync or async. A returned :class:`BatchItemResult` is
        kept as-is; any other return value becomes a success whose payload is
        the value (dicts are merged, other values go under ``"result"``).

        Raises:
            ConfigError: If ``limit`` is less than 1
        """
        if limit < 1:
            raise ConfigError(f"Concurrency limit must be >= 1, got {limit}")

        def _id(item: T, index: int) -> str:
            if item_id is not None:
                return str(item_id(item))
            return _default_item_id(item, index)

        async def _run_one(index: int, item: T) -> BatchItemResult:
            ident = _id(item, index)
            try:
                value = fn(item)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                logger.warning("limiter.item_failed", item_id=ident, error=error_message(e))
                return BatchItemResult.fail(ident, error_message(e))

            if isinstance(value, BatchItemResult):
                return value
            if isinstance(value, dict):
                return BatchItemResult.ok(ident, **value)
            if value is None:
                return BatchItemResult.ok(ident)
            return BatchItemResult.ok(ident, result=value)

        results: list[BatchItemResult] = []
        for start in range(0, len(items), limit):
            chunk = items[start : start + limit]
            chunk_results = await asyncio.gather(
                *(_run_one(start + offset, item) for offset, item in enumerate(chunk))
            )
            results.extend(chunk_results)

        logger.debug(
            "limiter.completed",
            total=len(results),
            failed=sum(1 for r in results if not r.success),
            limit=limit,
        )
        return results

    @staticmethod
    def summarize(results: list[BatchItemResult]) -> BatchSummary:
        return BatchSummary(results=list(results))
