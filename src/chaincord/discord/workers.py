"""Fixed-size pool of tasks consuming a bounded job queue."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import discord
import httpx

from chaincord.core.error_handling import (
    COMMON_HANDLER_EXCEPTIONS,
    log_exception,
    log_task_exception,
)

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]
SHUTDOWN_GRACE_SECONDS = 10.0
WORKER_JOB_ERRORS = (
    *COMMON_HANDLER_EXCEPTIONS,
    discord.DiscordException,
    httpx.HTTPError,
)


class WorkerPool:
    """Runs submitted jobs on ``size`` worker tasks.

    ``submit`` never waits. When ``queue_size`` jobs are already pending the
    new job is dropped and ``submit`` returns False, so a burst of messages
    cannot stall the Discord gateway.

    Shutdown stops idle workers immediately. A worker in the middle of a
    job finishes it (up to a grace period) and exits before its next read.
    """

    def __init__(self, size: int, queue_size: int) -> None:
        """Create a stopped pool; call :meth:`start` inside the event loop."""
        if size <= 0 or queue_size <= 0:
            message = "size and queue_size must be positive"
            raise ValueError(message)
        self.size = size
        self._queue: asyncio.Queue[Job] = asyncio.Queue(maxsize=queue_size)
        self._workers: dict[int, asyncio.Task[None]] = {}
        self._idle: set[int] = set()
        self._closing = False

    @property
    def pending(self) -> int:
        """Jobs waiting for a worker."""
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the worker tasks (no-op when already running)."""
        if self._workers:
            return
        self._closing = False
        for index in range(self.size):
            task = asyncio.create_task(
                self._worker(index),
                name=f"chaincord-worker-{index}",
            )
            task.add_done_callback(log_task_exception)
            self._workers[index] = task
        logger.info("Started %d workers (queue size %d)", self.size, self._queue.maxsize)

    def submit(self, job: Job, *, description: str = "job") -> bool:
        """Queue ``job``; drop it and return False when the queue is full."""
        if self._closing:
            logger.warning("Worker pool is shutting down, dropping %s", description)
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(
                "Worker queue full (%d pending), dropping %s",
                self._queue.qsize(),
                description,
            )
            return False
        return True

    async def _worker(self, index: int) -> None:
        while not self._closing:
            self._idle.add(index)
            try:
                job = await self._queue.get()
            finally:
                self._idle.discard(index)

            try:
                await job()
            except WORKER_JOB_ERRORS as exc:
                log_exception(
                    logger=logger,
                    message="Worker job failed",
                    error=exc,
                    context={"worker": index},
                )
            finally:
                self._queue.task_done()

    async def shutdown(self, grace_seconds: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Stop the workers, letting in-flight jobs finish within the grace."""
        if not self._workers:
            return
        self._closing = True
        for index, task in self._workers.items():
            if index in self._idle:
                task.cancel()

        tasks = list(self._workers.values())
        _, still_running = await asyncio.wait(tasks, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._idle.clear()
        logger.info("Worker pool stopped")
