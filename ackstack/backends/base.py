"""Queue backend protocol.

ALL claim logic lives in backends. Each backend realizes the same
at-least-once contract with whatever atomic primitive its substrate offers;
there is no shared lock or coordinator between backends.
"""

from typing import ClassVar, Protocol, runtime_checkable

from ackstack.core.claims import DEFAULT_RECYCLE_DELAY
from ackstack.core.message import Delivery, Message


@runtime_checkable
class MessageQueue(Protocol):
    """Protocol defining the interface for message queue backends.

    Backends are responsible for:
    - Storing messages (enqueue)
    - Claiming one queued message for exactly one consumer (dequeue)
    - Resolving claims (acknowledge, reject)
    - Returning abandoned claims to the queue (recycle_messages)
    """

    name: ClassVar[str]
    poll_interval: float

    async def enqueue(self, queue_name: str, message: Message) -> None:
        """Store a message in the queued state.

        Args:
            queue_name: Logical queue name.
            message: The Message to enqueue.

        Raises:
            QueueError: If the message could not be stored.
        """
        ...

    async def dequeue_nonblocking(self, queue_name: str) -> Delivery | None:
        """Atomically claim one queued message, if any.

        Safe under concurrent callers: at most one caller receives any given
        message.

        Returns:
            The claimed message with its claim token, or None if the queue
            has nothing to claim.
        """
        ...

    async def dequeue(self, queue_name: str, timeout: float = 0) -> Delivery | None:
        """Poll dequeue_nonblocking until a message is claimed.

        Args:
            queue_name: Logical queue name.
            timeout: Seconds to wait. 0 means wait forever.

        Returns:
            The claimed delivery, or None if the timeout elapsed first.
        """
        ...

    async def acknowledge(self, queue_name: str, delivery: Delivery) -> None:
        """Permanently remove a claimed message.

        Raises:
            QueueConfigurationError: If the delivery holds no live claim from
                this backend and queue.
        """
        ...

    async def reject(self, queue_name: str, delivery: Delivery, requeue: bool = False) -> None:
        """Terminate a claim, optionally making the message claimable again.

        Raises:
            QueueConfigurationError: If the delivery holds no live claim from
                this backend and queue.
        """
        ...

    async def recycle_messages(self, queue_name: str, delay: float = DEFAULT_RECYCLE_DELAY) -> int:
        """Requeue claims held for at least ``delay`` seconds.

        Returns:
            Number of claims recycled.
        """
        ...

    async def close(self) -> None:
        """Release connections or in-process state held by the backend."""
        ...
