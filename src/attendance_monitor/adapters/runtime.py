"""Background runtime for periodic monitoring jobs.

Cleanup and sampling run as asyncio tasks for the lifetime of the
application, started and stopped from the FastAPI lifespan.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodicJob:
    """A callable run every ``interval_seconds``.

    Attributes:
        name: Identifier used in logs.
        interval_seconds: Delay between runs.
        func: Sync or async callable taking no arguments.
    """

    name: str
    interval_seconds: float
    func: Callable[[], Any | Awaitable[Any]]


class MonitoringRuntime:
    """Runs periodic jobs until stopped.

    A failing job is logged and retried on its next tick.
    """

    def __init__(self, jobs: list[PeriodicJob] | None = None) -> None:
        self.jobs: list[PeriodicJob] = list(jobs or [])
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def add_job(self, job: PeriodicJob) -> None:
        self.jobs.append(job)

    async def run_once(self, job: PeriodicJob) -> None:
        """Execute one job immediately, logging failures."""
        try:
            result = job.func()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Periodic job failed", extra={"job": job.name})

    async def _loop(self, job: PeriodicJob) -> None:
        while True:
            await asyncio.sleep(job.interval_seconds)
            await self.run_once(job)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._loop(job), name=f"monitoring:{job.name}")
            for job in self.jobs
        ]
        logger.info("Monitoring runtime started", extra={"jobs": len(self._tasks)})

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Monitoring runtime stopped")
