import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from hktransport.common.result import Result

T = TypeVar('T')
R = TypeVar('R')


async def process_with_concurrency(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    limit: int,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> List[Result]:
    """Run `processor` over `items` in consecutive batches of `limit`.

    Each batch runs concurrently and fully settles before the next one starts.
    Every item yields exactly one Result, in input order; a failing item never
    cancels its siblings.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")

    items = list(items)
    total = len(items)
    completed = 0
    results: List[Result] = []

    async def settle(item):
        nonlocal completed
        try:
            outcome = Result.success(await processor(item))
        except Exception as e:
            outcome = Result.failure(e)
        completed += 1
        if on_progress is not None:
            on_progress(completed, total)
        return outcome

    for start in range(0, total, limit):
        batch = items[start:start + limit]
        results.extend(await asyncio.gather(*(settle(item) for item in batch)))

    return results
