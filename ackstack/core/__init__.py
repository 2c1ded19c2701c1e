"""Core types shared by every backend.

Types:
    Message: Immutable, validated queue message with UUID, timestamp and payload.
    ClaimToken: Backend-tagged claim handle.
    Delivery: A claimed message together with its ClaimToken.

Errors:
    QueueError: Any failed queue operation, wrapping the backend error.
    QueueConfigurationError: acknowledge/reject without a live claim.
    QueueFullError: A bounded in-memory queue is full.

Constants:
    MAX_PAYLOAD_SIZE: Maximum payload size in bytes (1MB).
    DEFAULT_RECYCLE_DELAY: Default claim age before recycling (600s).
    DEFAULT_POLL_INTERVAL: Default sleep between dequeue attempts (1s).
"""

from ackstack.core.claims import DEFAULT_RECYCLE_DELAY
from ackstack.core.errors import QueueConfigurationError, QueueError, QueueFullError
from ackstack.core.message import MAX_PAYLOAD_SIZE, ClaimToken, Delivery, Message
from ackstack.core.polling import DEFAULT_POLL_INTERVAL

__all__ = [
    "ClaimToken",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_RECYCLE_DELAY",
    "Delivery",
    "MAX_PAYLOAD_SIZE",
    "Message",
    "QueueConfigurationError",
    "QueueError",
    "QueueFullError",
]
