"""Single cancellable scheduler for the periodic jobs.

The trade sync worker, the alert dispatcher and the optional scheduled scan
each register a named job with its own interval. Every job runs in its own
asyncio task; a failing run is logged and the loop continues.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from recon.logging import get_logger

logger = get_logger(__name__)

JobFunc = Callable[[], Awaitable[object]]


@dataclass
class Job:
    name: str
    func: JobFunc
    interval: float
    run_immediately: bool = True
    runs: int = 0
    failures: int = 0
    wakeup: asyncio.Event = field(default_factory=asyncio.Event)


class Scheduler:
    """Runs registered jobs on fixed intervals until stopped."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}  # type: ignore[type-arg]
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> dict[str, Job]:
        return dict(self._jobs)

    def add_job(
        self,
        name: str,
        func: JobFunc,
        interval: float,
        run_immediately: bool = True,
    ) -> None:
        """Register a job. Jobs added while running start at once."""
        if name in self._jobs:
            raise ValueError(f"Job {name!r} already registered")
        if interval <= 0:
            raise ValueError(f"Job {name!r} interval must be positive")
        job = Job(name=name, func=func, interval=interval, run_immediately=run_immediately)
        self._jobs[name] = job
        if self._running:
            self._tasks[name] = asyncio.create_task(self._job_loop(job))

    async def start(self) -> None:
        if self._running:
            logger.warning("scheduler_already_running")
            return
        self._running = True
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._job_loop(job))
        logger.info("scheduler_started", jobs=sorted(self._jobs))

    async def stop(self) -> None:
        """Cancel every job task and wait for them to unwind."""
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("scheduler_stopped")

    def trigger(self, name: str) -> None:
        """Wake a job so it runs now instead of at its next interval."""
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        job.wakeup.set()

    async def run_job(self, job: Job) -> None:
        """Run one job invocation, logging failures."""
        try:
            await job.func()
        except asyncio.CancelledError:
            raise
        except Exception:
            job.failures += 1
            logger.error("scheduled_job_failed", job=job.name, exc_info=True)
        finally:
            job.runs += 1

    async def _job_loop(self, job: Job) -> None:
        if not job.run_immediately:
            await self._wait(job)
        while self._running:
            await self.run_job(job)
            if self._running:
                await self._wait(job)

    async def _wait(self, job: Job) -> None:
        try:
            await asyncio.wait_for(job.wakeup.wait(), timeout=job.interval)
        except asyncio.TimeoutError:
            pass
        job.wakeup.clear()
