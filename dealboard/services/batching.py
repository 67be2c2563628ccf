"""
Rate-limit aware batch execution for CRM calls.

The CRM enforces a fixed-window limit (N requests per T seconds). Work is
split into contiguous groups that run fully in parallel; the next group
starts only after the current one has settled and a cooldown has elapsed.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from dealboard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class Attempt(Generic[R]):
    """Outcome of one call: a value or the exception it raised."""

    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(fn: Callable[[T], Awaitable[R]], item: T) -> Attempt[R]:
    """Run fn(item) once, capturing any exception instead of raising it."""
    try:
        return Attempt(value=await fn(item))
    except asyncio.CancelledError:
        raise
    except Exception as e:
        return Attempt(error=e)


async def run_batched(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay_s: float,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[Attempt[R]]:
    """
    Apply fn to every item in groups of batch_size.

    Args:
        items: Work items, processed in contiguous groups
        fn: Async callable invoked once per item
        batch_size: Items per group, all started together
        delay_s: Pause between groups (not after the last one)
        sleep: Injected for tests

    Returns:
        One Attempt per item, in input order regardless of completion order.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    results: list[Attempt[R]] = []
    total_batches = (len(items) + batch_size - 1) // batch_size

    for batch_number, start in enumerate(range(0, len(items), batch_size), 1):
        batch = items[start : start + batch_size]
        # gather keeps positional order
        results.extend(await asyncio.gather(*(attempt(fn, item) for item in batch)))

        failures = sum(1 for result in results[start:] if not result.ok)
        logger.debug(
            "Batch settled",
            batch_number=batch_number,
            total_batches=total_batches,
            batch_size=len(batch),
            failures=failures,
        )

        if batch_number < total_batches and delay_s > 0:
            await sleep(delay_s)

    return results
