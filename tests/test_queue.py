"""Tests for the single-consumer task queue."""

import asyncio

import pytest

from cairn.core.queue import TaskQueue


@pytest.fixture
async def queue():
    task_queue = TaskQueue()
    await task_queue.start()
    yield task_queue
    await task_queue.stop()


@pytest.mark.asyncio
async def test_submit_returns_result(queue: TaskQueue):
    async def job():
        return 42

    assert await queue.submit("answer", job) == 42


@pytest.mark.asyncio
async def test_jobs_never_overlap(queue: TaskQueue):
    """Jobs run strictly one after another in submission order."""
    running = 0
    peak = 0
    order = []

    def make_job(name: str):
        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            order.append(name)
            running -= 1

        return job

    await asyncio.gather(*(queue.submit(str(i), make_job(str(i))) for i in range(5)))

    assert peak == 1
    assert order == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_failure_propagates_and_queue_survives(queue: TaskQueue):
    async def broken():
        raise RuntimeError("boom")

    async def fine():
        return "ok"

    with pytest.raises(RuntimeError, match="boom"):
        await queue.submit("broken", broken)
    assert await queue.submit("fine", fine) == "ok"


@pytest.mark.asyncio
async def test_stop_drains_pending_jobs():
    """Jobs queued before stop() still run."""
    task_queue = TaskQueue()
    await task_queue.start()
    done = []

    async def job():
        await asyncio.sleep(0.01)
        done.append(True)

    futures = [task_queue.submit_nowait("job", job) for _ in range(3)]
    await task_queue.stop()

    assert len(done) == 3
    assert all(f.done() for f in futures)
    assert not task_queue.running


@pytest.mark.asyncio
async def test_submit_after_stop_is_rejected():
    task_queue = TaskQueue()
    await task_queue.start()
    await task_queue.stop()

    async def job():
        return None

    with pytest.raises(RuntimeError):
        task_queue.submit_nowait("late", job)


@pytest.mark.asyncio
async def test_submit_before_start_is_rejected():
    """Without a consumer the job would never run."""
    task_queue = TaskQueue()

    async def job():
        return None

    with pytest.raises(RuntimeError, match="not started"):
        await task_queue.submit("early", job)
