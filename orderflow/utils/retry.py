from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, base: float = 0.0, factor: float = 2.0, jitter: float = 0.0
) -> float:
    """Compute exponential backoff with jitter.

    A ``base`` of zero disables the delay entirely.
    """
    if base <= 0:
        return 0.0
    delay = base * factor ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, base: float = 0.0, factor: float = 2.0) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base=base, factor=factor)
    if delay:
        await asyncio.sleep(delay)
