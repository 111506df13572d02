"""
In-process background task queue.

Side effects that must not block a request (mirroring a new order to the
point-of-sale platform) are enqueued here as job factories. One worker
task drains the queue in order.

Each job carries:
  - delay: seconds to wait before the first attempt (lets the request's
    transaction commit before the job opens its own session)
  - retry_delay: fixed pause before a failed job is tried again
  - max_attempts: hard bound; after that the failure is logged and the
    job is dropped

Jobs are at-least-once and must be idempotent. Failures are logged and
never propagate to the code that enqueued them.

Lifecycle: `start()` and `stop()` are called from the application
lifespan. `drain()` waits until nothing is queued or scheduled; tests use
it to observe a job's effect deterministically.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from brewledger.logging import get_logger

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass
class Job:
    name: str
    factory: JobFactory
    retry_delay: float
    max_attempts: int
    attempt: int = 0


class TaskQueue:
    """A single-worker asyncio queue with delayed, bounded retries."""

    def __init__(self):
        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._timers: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="brewledger-task-queue")
        logger.info("Task queue started")

    async def stop(self) -> None:
        """Cancel pending timers and the worker. Queued jobs are dropped."""
        for timer in list(self._timers):
            timer.cancel()
        if self._timers:
            await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.info("Task queue stopped")

    def enqueue(
        self,
        name: str,
        factory: JobFactory,
        *,
        delay: float = 0.0,
        retry_delay: float = 1.0,
        max_attempts: int = 3,
    ) -> None:
        """Schedule `factory()` to run on the worker after `delay` seconds."""
        job = Job(
            name=name,
            factory=factory,
            retry_delay=retry_delay,
            max_attempts=max(1, max_attempts),
        )
        self._schedule(job, delay)

    def _schedule(self, job: Job, delay: float) -> None:
        if delay <= 0:
            self._queue.put_nowait(job)
            return
        timer = asyncio.create_task(self._put_later(job, delay))
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def _put_later(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._queue.put(job)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()

    async def _execute(self, job: Job) -> None:
        job.attempt += 1
        try:
            await job.factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            if job.attempt >= job.max_attempts:
                logger.exception(
                    "Job %s failed after %d attempts; giving up", job.name, job.attempt
                )
                return
            logger.warning(
                "Job %s failed (attempt %d/%d); retrying in %.1fs",
                job.name, job.attempt, job.max_attempts, job.retry_delay,
                exc_info=True,
            )
            self._schedule(job, job.retry_delay)
        else:
            logger.debug("Job %s finished on attempt %d", job.name, job.attempt)

    async def drain(self) -> None:
        """Wait until no job is queued, running or waiting on a timer."""
        while True:
            if self._timers:
                await asyncio.gather(*list(self._timers), return_exceptions=True)
            await self._queue.join()
            if not self._timers and self._queue.empty():
                return
