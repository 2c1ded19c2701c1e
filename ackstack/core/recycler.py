"""Out-of-band sweep returning abandoned claims to their queues.

The Recycler never runs on its own schedule. Call sweep() from cron, the
``python -m ackstack recycle`` command, or a periodic task of your own.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ackstack.backends.base import MessageQueue
from ackstack.core.claims import DEFAULT_RECYCLE_DELAY, check_delay

logger = logging.getLogger("ackstack.recycler")


@dataclass
class RecyclerStats:
    """Totals across every sweep of one Recycler."""

    sweeps: int = 0
    recycled: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.recycled.values())


class Recycler:
    """Calls recycle_messages on a backend for a fixed set of queues.

    Args:
        queue: The backend to sweep.
        queue_names: Queues to sweep, in order.
        delay: Claims held at least this many seconds are recycled.
    """

    def __init__(
        self,
        queue: MessageQueue,
        queue_names: Iterable[str],
        delay: float = DEFAULT_RECYCLE_DELAY,
    ) -> None:
        check_delay(delay)
        self.queue = queue
        self.queue_names = list(queue_names)
        if not self.queue_names:
            raise ValueError("Recycler needs at least one queue name")
        self.delay = delay
        self.stats = RecyclerStats()

    async def sweep(self) -> dict[str, int]:
        """Recycle stale claims on every queue once.

        Returns:
            Mapping of queue name to number of claims recycled.

        Raises:
            QueueError: From the first queue whose sweep failed. Queues
                swept before it keep their results in ``stats``.
        """
        results: dict[str, int] = {}
        for queue_name in self.queue_names:
            count = await self.queue.recycle_messages(queue_name, self.delay)
            results[queue_name] = count
            self.stats.recycled[queue_name] = self.stats.recycled.get(queue_name, 0) + count
            if count:
                logger.info(
                    f"Recycled {count} messages on {queue_name!r}",
                    extra={"backend": self.queue.name, "queue": queue_name, "recycled": count},
                )

        self.stats.sweeps += 1
        logger.debug(
            "Sweep complete",
            extra={"backend": self.queue.name, "recycled": sum(results.values())},
        )
        return results
