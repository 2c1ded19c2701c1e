"""In-memory backend using per-queue deques and an in-process claim map."""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import ClassVar

from ackstack.core.claims import DEFAULT_RECYCLE_DELAY, ClaimTracker, check_delay, require_claim
from ackstack.core.errors import QueueFullError
from ackstack.core.message import Delivery, Message
from ackstack.core.polling import DEFAULT_POLL_INTERVAL, poll_dequeue

logger = logging.getLogger("ackstack.backends.memory")


class InMemoryQueue:
    """FIFO queue backend held entirely in process memory.

    This backend is suitable for development and testing. It provides
    no durability guarantees: messages are lost if the process terminates.
    Threads sharing one instance are safe; separate processes are not.

    Args:
        max_size: Maximum number of queued messages per queue. 0 means
            unbounded (default).
        poll_interval: Seconds between attempts in dequeue().
        clock: Monotonic clock used to age claims. Injectable for tests.
    """

    name: ClassVar[str] = "memory"

    def __init__(
        self,
        max_size: int = 0,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._queues: dict[str, deque[Message]] = {}
        self._max_size = max_size
        self._claims = ClaimTracker(self.name, clock=clock)
        self._lock = threading.Lock()
        self.poll_interval = poll_interval

    def _queue(self, queue_name: str) -> deque[Message]:
        if queue_name not in self._queues:
            self._queues[queue_name] = deque()
        return self._queues[queue_name]

    def _push(self, queue_name: str, message: Message) -> None:
        queue = self._queue(queue_name)
        if self._max_size > 0 and len(queue) >= self._max_size:
            raise QueueFullError(
                f"Queue {queue_name!r} full (max_size={self._max_size}), cannot enqueue message"
            )
        queue.append(message)

    async def enqueue(self, queue_name: str, message: Message) -> None:
        """Append a message to the tail of the queue.

        Raises:
            QueueFullError: If the queue is full (when max_size > 0).
        """
        with self._lock:
            self._push(queue_name, message)
        logger.debug(
            "Enqueued message",
            extra={"backend": self.name, "queue": queue_name, "message_id": message.id},
        )

    async def dequeue_nonblocking(self, queue_name: str) -> Delivery | None:
        with self._lock:
            queue = self._queue(queue_name)
            if not queue:
                return None
            message = queue.popleft()
            token = self._claims.open(queue_name, message)
        return Delivery(message=message, token=token)

    async def dequeue(self, queue_name: str, timeout: float = 0) -> Delivery | None:
        return await poll_dequeue(
            lambda: self.dequeue_nonblocking(queue_name), timeout, self.poll_interval
        )

    async def acknowledge(self, queue_name: str, delivery: Delivery) -> None:
        token = require_claim(delivery, self.name, queue_name)
        with self._lock:
            self._claims.close(token)

    async def reject(self, queue_name: str, delivery: Delivery, requeue: bool = False) -> None:
        token = require_claim(delivery, self.name, queue_name)
        with self._lock:
            claim = self._claims.close(token)
            if requeue:
                self._queue(queue_name).append(claim.message)

    async def recycle_messages(self, queue_name: str, delay: float = DEFAULT_RECYCLE_DELAY) -> int:
        """Return claims held for at least ``delay`` seconds to the queue tail."""
        check_delay(delay)
        with self._lock:
            expired = self._claims.expire(queue_name, delay)
            queue = self._queue(queue_name)
            for claim in expired:
                queue.append(claim.message)
        for claim in expired:
            logger.warning(
                "Recycled stale claim",
                extra={
                    "backend": self.name,
                    "queue": queue_name,
                    "message_id": claim.message.id,
                    "handle": claim.token.handle,
                },
            )
        return len(expired)

    def qsize(self, queue_name: str) -> int:
        """Return the number of queued (unclaimed) messages."""
        return len(self._queues.get(queue_name, ()))

    def in_flight(self, queue_name: str | None = None) -> int:
        """Return the number of outstanding claims."""
        return self._claims.count(queue_name)

    async def close(self) -> None:
        """Drop all queued messages and outstanding claims."""
        with self._lock:
            self._queues.clear()
            self._claims.clear()
