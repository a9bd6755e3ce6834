"""
Concurrency-bounded wave executor.

Work items are split into waves of at most ``limit`` items. All items of a
wave run concurrently and the next wave is not started until every item of
the current wave has settled. This is a barrier, not a sliding window: each
wave is as slow as its slowest item, and every wave boundary is a natural
checkpoint for progress reporting.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TypeVar

from transcuraboo.services.common.errors import WaveFailure

T = TypeVar("T")
R = TypeVar("R")


def partition_waves(count: int, limit: int) -> list[range]:
    """Split ``count`` item positions into consecutive waves of at most ``limit``."""
    if limit <= 0:
        raise ValueError("Concurrency limit must be at least 1")
    return [range(start, min(start + limit, count)) for start in range(0, count, limit)]


async def run_in_waves(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T], Awaitable[R]],
) -> AsyncIterator[list[tuple[int, R]]]:
    """
    Run ``worker`` over ``items`` in barrier-separated waves.

    Yields, once per wave, the ``(index, result)`` pairs of that wave where
    ``index`` is the item's position in ``items``. Pairs are listed in index
    order, but callers should rely on the explicit index rather than list
    position to restore order.

    Raises:
        WaveFailure: if any item of a wave fails. Remaining waves are not
            started. The failure carries the lowest failing index and the
            pairs of that wave which did succeed.
    """
    for wave in partition_waves(len(items), limit):
        outcomes = await asyncio.gather(
            *(worker(items[index]) for index in wave),
            return_exceptions=True,
        )

        completed: list[tuple[int, R]] = []
        failures: list[tuple[int, BaseException]] = []
        for index, outcome in zip(wave, outcomes):
            if isinstance(outcome, BaseException):
                failures.append((index, outcome))
            else:
                completed.append((index, outcome))

        if failures:
            failed_index, cause = failures[0]
            raise WaveFailure(failed_index, completed, cause) from cause

        yield completed
