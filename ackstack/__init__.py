"""ackstack - At-least-once message queues over memory, files, SQL and brokers."""

from ackstack.backends import FileQueue, InMemoryQueue, MessageQueue, RedisQueue, SqlQueue
from ackstack.core import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RECYCLE_DELAY,
    MAX_PAYLOAD_SIZE,
    ClaimToken,
    Delivery,
    Message,
    QueueConfigurationError,
    QueueError,
    QueueFullError,
)
from ackstack.core.recycler import Recycler
from ackstack.factory import create_queue
from ackstack.settings import QueueSettings

__version__ = "0.1.0"

__all__ = [
    # Core
    "Message",
    "ClaimToken",
    "Delivery",
    "Recycler",
    "MAX_PAYLOAD_SIZE",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_RECYCLE_DELAY",
    # Errors
    "QueueError",
    "QueueConfigurationError",
    "QueueFullError",
    # Backends
    "MessageQueue",
    "InMemoryQueue",
    "FileQueue",
    "SqlQueue",
    "RedisQueue",
    # Configuration
    "QueueSettings",
    "create_queue",
    # Meta
    "__version__",
]
