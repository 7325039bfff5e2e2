"""Single-consumer job queue.

Writers that scan-then-write the same tables (reconciliation, compaction,
importance recalculation) are submitted here so that at most one of them runs
at a time, whether the trigger is a manual call or a debounced file watch.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from cairn.core.logging import get_logger

logger = get_logger("core.queue")

Job = Callable[[], Awaitable[Any]]


@dataclass
class QueuedJob:
    """A job waiting for the consumer."""

    name: str
    callback: Job
    future: asyncio.Future = field(repr=False)


class TaskQueue:
    """Runs submitted coroutine factories one after another on a single worker task."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[QueuedJob | None] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start the consumer task."""
        if self.running:
            return
        self._closed = False
        self._worker = asyncio.create_task(self._consume(), name="cairn-task-queue")
        logger.debug("Task queue started")

    def submit_nowait(self, name: str, callback: Job) -> asyncio.Future:
        """Enqueue a job and return a future for its result."""
        if self._closed:
            raise RuntimeError("Task queue is closed")
        if not self.running:
            raise RuntimeError("Task queue not started")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(QueuedJob(name=name, callback=callback, future=future))
        return future

    async def submit(self, name: str, callback: Job) -> Any:
        """Enqueue a job and wait for it to finish; its exception propagates."""
        return await self.submit_nowait(name, callback)

    async def stop(self) -> None:
        """Finish already queued jobs, then stop the consumer."""
        if self._closed:
            return
        self._closed = True
        if self._worker is None:
            return
        await self._queue.put(None)
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        logger.debug("Task queue stopped")

    async def _consume(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                break
            if job.future.cancelled():
                continue
            try:
                result = await job.callback()
            except Exception as e:
                logger.error(f"Job {job.name} failed: {e}")
                if not job.future.done():
                    job.future.set_exception(e)
            else:
                if not job.future.done():
                    job.future.set_result(result)
