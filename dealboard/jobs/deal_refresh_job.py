"""
Deal refresh job.
Keeps the deal snapshot warm by running a reconciliation pass on a fixed
interval, so dashboard reads rarely see a stale snapshot.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from dealboard.config import settings
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.services.container import ServiceContainer

logger = get_logger(__name__)

ERROR_RETRY_SECONDS = 60


async def run_deal_refresh_job(container: ServiceContainer) -> dict:
    """
    Run one reconciliation pass through the controller.

    Returns:
        dict: Job metrics; `skipped` is True when a pass was already running
    """
    start = time.time()
    was_running = container.controller.is_running
    result = await container.controller.trigger()

    metrics = {
        "skipped": was_running,
        "success": result is not None,
        "duration_seconds": round(time.time() - start, 2),
    }
    if result is not None:
        metrics.update(result.to_dict())
    elif container.controller.last_error:
        metrics["error"] = container.controller.last_error
    return metrics


async def start_deal_refresh_scheduler(
    container: ServiceContainer | None = None,
    *,
    interval_seconds: float | None = None,
    max_cycles: int | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Run the deal refresh job forever (or for max_cycles passes).

    Builds and owns its own ServiceContainer unless one is passed in.
    """
    interval = interval_seconds if interval_seconds is not None else settings.DEAL_REFRESH_INTERVAL_SECONDS
    owns_container = container is None
    if owns_container:
        container = ServiceContainer.build(settings)
        await container.start()

    logger.info("Starting deal refresh scheduler", interval_seconds=interval)

    cycles = 0
    try:
        while max_cycles is None or cycles < max_cycles:
            cycles += 1
            try:
                metrics = await run_deal_refresh_job(container)
                logger.info("Deal refresh cycle completed", cycle=cycles, **metrics)
                delay = interval
            except Exception as e:
                logger.error(
                    "Error in deal refresh scheduler", error=str(e), error_type=type(e).__name__
                )
                delay = min(interval, ERROR_RETRY_SECONDS)

            if max_cycles is None or cycles < max_cycles:
                await sleep(delay)
    finally:
        if owns_container:
            await container.stop()
        logger.info("Deal refresh scheduler stopped", cycles=cycles)
