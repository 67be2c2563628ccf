"""
Background worker entry point.

`dealboard-worker [job]` (or WORKER_JOB) picks a job from JOB_REGISTRY.
`deal_refresh` keeps reconciling on an interval; `deal_refresh_once` runs
a single pass, for cron-style schedulers.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from dealboard.config import settings
from dealboard.infrastructure.observability.logging import get_logger, setup_logging
from dealboard.jobs.deal_refresh_job import start_deal_refresh_scheduler

logger = get_logger(__name__)

DEFAULT_JOB = "deal_refresh"


async def _refresh_once() -> None:
    await start_deal_refresh_scheduler(max_cycles=1)


JOB_REGISTRY: dict[str, Callable[[], Awaitable[None]]] = {
    "deal_refresh": start_deal_refresh_scheduler,
    "deal_refresh_once": _refresh_once,
}


def _job_name_from_env(argv: list[str]) -> str:
    raw = argv[1] if len(argv) > 1 else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return raw.strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """
    Run one registered job to completion.

    Raises:
        ValueError: If job_name is not registered
    """
    name = (job_name or _job_name_from_env(sys.argv)).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(f"Unknown worker job '{name}', expected one of: {', '.join(sorted(JOB_REGISTRY))}")

    logger.info("Worker starting", job=name)
    await job()
    logger.info("Worker finished", job=name)


def main() -> None:
    setup_logging(log_level=settings.LOG_LEVEL, json_output=not settings.debug)
    asyncio.run(run_worker(_job_name_from_env(sys.argv)))


if __name__ == "__main__":
    main()
