"""Build the configured queue backend."""

import logging

from ackstack.backends.base import MessageQueue
from ackstack.settings import QueueSettings

logger = logging.getLogger("ackstack.factory")


def create_queue(settings: QueueSettings | None = None) -> MessageQueue:
    """Instantiate the backend named by ``settings.backend``.

    Args:
        settings: Settings to use. Loaded from the environment when None.

    Raises:
        ImportError: If the backend's optional dependency is not installed.
    """
    settings = settings or QueueSettings()

    if settings.backend == "memory":
        from ackstack.backends.inmemory import InMemoryQueue

        queue: MessageQueue = InMemoryQueue(poll_interval=settings.poll_interval)
    elif settings.backend == "file":
        from ackstack.backends.file import FileQueue

        queue = FileQueue(settings.directory, poll_interval=settings.poll_interval)
    elif settings.backend == "sql":
        from ackstack.backends.sql import SqlQueue

        queue = SqlQueue(settings.url, table=settings.table, poll_interval=settings.poll_interval)
    elif settings.backend == "redis":
        from ackstack.backends.redis import RedisQueue

        queue = RedisQueue(
            settings.url,
            stream_prefix=settings.stream_prefix,
            consumer_group=settings.consumer_group,
            poll_interval=settings.poll_interval,
        )
    else:
        try:
            from ackstack.backends.amqp import AmqpQueue
        except ImportError as e:
            raise ImportError("Install aio-pika: pip install ackstack[amqp]") from e

        queue = AmqpQueue(settings.url, poll_interval=settings.poll_interval)

    logger.debug(f"Created {queue.name} queue backend", extra={"backend": queue.name})
    return queue
