"""Queue backend implementations.

The AMQP backend needs the ``amqp`` extra and is imported from
``ackstack.backends.amqp`` directly.
"""

from ackstack.backends.base import MessageQueue
from ackstack.backends.file import FileQueue
from ackstack.backends.inmemory import InMemoryQueue
from ackstack.backends.redis import RedisQueue
from ackstack.backends.sql import SqlQueue

__all__ = ["FileQueue", "InMemoryQueue", "MessageQueue", "RedisQueue", "SqlQueue"]
