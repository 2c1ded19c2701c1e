"""Tests for the Recycler sweep."""

import logging

import pytest

from ackstack.backends.inmemory import InMemoryQueue
from ackstack.core.errors import QueueError
from ackstack.core.message import Message
from ackstack.core.recycler import Recycler


class FailingQueue(InMemoryQueue):
    """Backend whose recycle fails for one queue."""

    def __init__(self, failing: str) -> None:
        super().__init__()
        self.failing = failing

    async def recycle_messages(self, queue_name: str, delay: float = 600) -> int:
        if queue_name == self.failing:
            raise QueueError(f"recycle failed on {queue_name!r}")
        return await super().recycle_messages(queue_name, delay)


async def _claim(queue: InMemoryQueue, queue_name: str, count: int) -> None:
    for i in range(count):
        await queue.enqueue(queue_name, Message(payload=i))
        await queue.dequeue_nonblocking(queue_name)


async def test_sweep_reports_per_queue(memory_queue):
    await _claim(memory_queue, "emails", 2)
    await _claim(memory_queue, "reports", 1)

    recycler = Recycler(memory_queue, ["emails", "reports", "idle"], delay=0)
    results = await recycler.sweep()

    assert results == {"emails": 2, "reports": 1, "idle": 0}
    assert memory_queue.qsize("emails") == 2
    assert memory_queue.in_flight() == 0


async def test_stats_accumulate_across_sweeps(memory_queue):
    recycler = Recycler(memory_queue, ["q"], delay=0)

    await _claim(memory_queue, "q", 1)
    await recycler.sweep()
    await memory_queue.dequeue_nonblocking("q")
    await recycler.sweep()

    assert recycler.stats.sweeps == 2
    assert recycler.stats.recycled == {"q": 2}
    assert recycler.stats.total == 2


async def test_sweep_respects_delay(memory_queue):
    await _claim(memory_queue, "q", 1)
    assert await Recycler(memory_queue, ["q"]).sweep() == {"q": 0}


async def test_sweep_logs_recycled_counts(memory_queue, caplog):
    await _claim(memory_queue, "q", 3)

    with caplog.at_level(logging.INFO, logger="ackstack.recycler"):
        await Recycler(memory_queue, ["q"], delay=0).sweep()

    record = next(r for r in caplog.records if r.name == "ackstack.recycler" and r.levelno == logging.INFO)
    assert record.recycled == 3
    assert record.queue == "q"
    assert record.backend == "memory"


async def test_sweep_propagates_backend_errors():
    queue = FailingQueue(failing="broken")
    await _claim(queue, "ok", 1)
    recycler = Recycler(queue, ["ok", "broken"], delay=0)

    with pytest.raises(QueueError):
        await recycler.sweep()
    assert recycler.stats.recycled == {"ok": 1}
    assert recycler.stats.sweeps == 0


def test_requires_queue_names(memory_queue):
    with pytest.raises(ValueError):
        Recycler(memory_queue, [])


def test_rejects_negative_delay(memory_queue):
    with pytest.raises(ValueError):
        Recycler(memory_queue, ["q"], delay=-5)
