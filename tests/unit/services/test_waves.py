"""
Unit tests for the wave executor.

Tests cover:
- Partitioning into waves of at most the concurrency limit
- Barrier ordering between waves
- Failure handling and salvage of completed results
"""

import asyncio

import pytest

from transcuraboo.services.common.errors import WaveFailure
from transcuraboo.services.common.waves import partition_waves, run_in_waves


async def collect(items, limit, worker):
    waves = []
    async for wave in run_in_waves(items, limit, worker):
        waves.append(wave)
    return waves


@pytest.mark.unit
class TestPartitionWaves:
    """Test wave partitioning."""

    def test_partition(self):
        """Seven items with limit three form waves of 3, 3 and 1."""
        waves = partition_waves(7, 3)

        assert [list(w) for w in waves] == [[0, 1, 2], [3, 4, 5], [6]]

    def test_no_items(self):
        """No items means no waves."""
        assert partition_waves(0, 10) == []

    def test_invalid_limit(self):
        """A limit below one is rejected."""
        with pytest.raises(ValueError):
            partition_waves(5, 0)


@pytest.mark.unit
class TestRunInWaves:
    """Test barrier-separated execution."""

    async def test_results_carry_item_index(self):
        """Every result is paired with its item index."""
        # Setup
        async def worker(item):
            # Later items finish first
            await asyncio.sleep(0.01 * (5 - item))
            return item * 10

        # Act
        waves = await collect(list(range(5)), 2, worker)

        # Assert
        assert [len(w) for w in waves] == [2, 2, 1]
        pairs = sorted(pair for wave in waves for pair in wave)
        assert pairs == [(i, i * 10) for i in range(5)]

    async def test_barrier_between_waves(self):
        """No item of a wave starts before every item of the previous wave settles."""
        # Setup
        log = []

        async def worker(item):
            log.append(("start", item))
            await asyncio.sleep(0.02 if item % 3 == 0 else 0.005)
            log.append(("end", item))
            return item

        # Act
        await collect(list(range(6)), 3, worker)

        # Assert
        last_end_first_wave = max(log.index(("end", i)) for i in range(3))
        first_start_second_wave = min(log.index(("start", i)) for i in range(3, 6))
        assert last_end_first_wave < first_start_second_wave

    async def test_concurrency_bounded_by_limit(self):
        """At most ``limit`` items are in flight at once."""
        in_flight = 0
        peak = 0

        async def worker(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.005)
            in_flight -= 1
            return item

        await collect(list(range(23)), 4, worker)

        assert peak == 4

    async def test_failure_stops_later_waves(self):
        """A failing item raises WaveFailure and later waves never start."""
        # Setup
        started = []

        async def worker(item):
            started.append(item)
            if item == 3:
                raise RuntimeError("boom")
            return item

        # Act
        collected = []
        with pytest.raises(WaveFailure) as exc_info:
            async for wave in run_in_waves(list(range(9)), 3, worker):
                collected.append(wave)

        # Assert
        failure = exc_info.value
        assert failure.failed_index == 3
        assert str(failure) == "boom"
        assert isinstance(failure.cause, RuntimeError)
        assert sorted(failure.completed) == [(4, 4), (5, 5)]
        assert collected == [[(0, 0), (1, 1), (2, 2)]]
        assert sorted(started) == [0, 1, 2, 3, 4, 5]

    async def test_lowest_failing_index_is_reported(self):
        """With several failures in one wave the lowest index wins."""

        async def worker(item):
            if item in (1, 2):
                raise ValueError(f"bad {item}")
            return item

        with pytest.raises(WaveFailure) as exc_info:
            await collect(list(range(3)), 3, worker)

        assert exc_info.value.failed_index == 1
        assert exc_info.value.completed == [(0, 0)]
