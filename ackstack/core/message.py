"""Message envelope and claim token models for ackstack."""

import json
import re
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, field_validator

from ackstack.core.errors import QueueError

# UUID v4 regex pattern for validation
_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Maximum payload size (1MB)
MAX_PAYLOAD_SIZE = 1_000_000


class Message(BaseModel):
    """Immutable message envelope.

    Messages are what producers enqueue and consumers receive. They are:
    - Immutable (frozen after creation)
    - Validated (all fields checked on construction)
    - Opaque to the queue (the payload is passed through untouched)

    Attributes:
        id: UUID v4 string, auto-generated if not provided. Survives requeue
            and recycling, so consumers can deduplicate on it.
        timestamp: UTC datetime, auto-generated if not provided.
        payload: Any JSON-serializable value (max 1MB when serialized).
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload: Any = None

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ensure id is a valid UUID v4 string."""
        if not _UUID_PATTERN.match(v):
            raise ValueError(f"id must be a valid UUID v4 string, got: {v!r}")
        return v.lower()

    @field_validator("payload")
    @classmethod
    def validate_payload(cls, v: Any) -> Any:
        """Ensure payload is strictly JSON-serializable and within size limits."""
        try:
            serialized = json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload must be JSON-serializable: {e}") from e

        byte_length = len(serialized.encode("utf-8"))
        if byte_length > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"payload exceeds maximum size of {MAX_PAYLOAD_SIZE} bytes "
                f"(got {byte_length} bytes)"
            )
        return v

    def to_json(self) -> str:
        """Serialize the message to the JSON text stored by durable backends."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "Message":
        """Rebuild a message from its stored JSON text.

        Raises:
            QueueError: If the text is not a valid serialized message.
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise QueueError("Stored message could not be deserialized", original=e) from e


class ClaimToken(BaseModel):
    """Proof that a message is currently leased to one consumer.

    Only the backend named in ``backend`` knows how to interpret ``handle``.
    """

    backend: str
    queue: str
    handle: str | int
    claimed_at: datetime

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }


class Delivery(BaseModel):
    """A claimed message together with the token that authorizes ack/reject."""

    message: Message
    token: ClaimToken

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @property
    def message_id(self) -> str:
        return self.message.id
