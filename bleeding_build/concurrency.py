"""Bounded concurrency for build groups."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_with_concurrency(
    items: Iterable[T],
    limit: int,
    task: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Run `task` over `items` with at most `limit` running at once.

    A pool of `limit` workers (clamped to 1..len(items)) pulls the next
    unclaimed index from a shared counter. Results are stored by input
    index, so the returned list matches the order of `items` whatever the
    completion order.

    If a task raises, no further items are started and the exception
    propagates. Tasks already running are not cancelled; their results are
    discarded.
    """
    pending = list(items)
    if not pending:
        return []

    workers = max(1, min(limit, len(pending)))
    results: list[R | None] = [None] * len(pending)
    next_index = 0
    failed = False

    async def worker() -> None:
        nonlocal next_index, failed
        while not failed and next_index < len(pending):
            index = next_index
            next_index += 1
            try:
                results[index] = await task(pending[index])
            except BaseException:
                failed = True
                raise

    await asyncio.gather(*(worker() for _ in range(workers)))
    return results  # type: ignore[return-value]
