"""Tests for bleeding_build.concurrency."""

from __future__ import annotations

import asyncio

import pytest

from bleeding_build.concurrency import map_with_concurrency


class TestMapWithConcurrency:
    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        task_calls: list[int] = []

        async def task(item: int) -> int:
            task_calls.append(item)
            return item

        assert await map_with_concurrency([], 3, task) == []
        assert task_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 4, 14])
    async def test_results_follow_input_order(self, limit: int) -> None:
        """Later items finishing first does not reorder the results."""
        items = [1, 2, 3, 4]
        running = 0
        peak = 0

        async def task(item: int) -> str:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.001 * (5 - item))
            running -= 1
            return f"r{item}"

        results = await map_with_concurrency(items, limit, task)

        assert results == ["r1", "r2", "r3", "r4"]
        assert peak == min(limit, len(items))

    @pytest.mark.asyncio
    async def test_never_exceeds_limit(self) -> None:
        running = 0
        peak = 0

        async def task(item: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.001)
            running -= 1
            return item

        results = await map_with_concurrency(range(10), 3, task)

        assert results == list(range(10))
        assert peak == 3

    @pytest.mark.asyncio
    async def test_limit_below_one_runs_serially(self) -> None:
        running = 0
        peak = 0

        async def task(item: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            running -= 1
            return item * 2

        assert await map_with_concurrency([1, 2, 3], 0, task) == [2, 4, 6]
        assert peak == 1

    @pytest.mark.asyncio
    async def test_failure_propagates_and_stops_new_work(self) -> None:
        started: list[int] = []

        async def task(item: int) -> int:
            started.append(item)
            await asyncio.sleep(0)
            if item == 1:
                raise RuntimeError("boom")
            return item

        with pytest.raises(RuntimeError, match="boom"):
            await map_with_concurrency([1, 2, 3, 4], 1, task)

        assert started == [1]
