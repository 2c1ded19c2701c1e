"""Claim bookkeeping shared by the queue backends.

A claim is an exclusive lease on one message: created by dequeue, resolved
by acknowledge or reject, or abandoned and later recycled. Durable backends
keep claim state in their own storage (a table column pair, a file stamp, a
stream's pending list); the in-memory backend keeps it in a ClaimTracker.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from ackstack.core.errors import QueueConfigurationError
from ackstack.core.message import ClaimToken, Delivery, Message

# Default age (seconds) after which an unresolved claim is recycled
DEFAULT_RECYCLE_DELAY = 600


def require_claim(delivery: Any, backend: str, queue_name: str) -> ClaimToken:
    """Return the delivery's claim token if this backend issued it for this queue.

    Raises:
        QueueConfigurationError: If the argument carries no claim from this
            backend and queue.
    """
    if not isinstance(delivery, Delivery):
        raise QueueConfigurationError(
            f"Expected a Delivery returned by dequeue, got {type(delivery).__name__}"
        )
    token = delivery.token
    if token.backend != backend:
        raise QueueConfigurationError(
            f"Claim was issued by the {token.backend!r} backend, not {backend!r}"
        )
    if token.queue != queue_name:
        raise QueueConfigurationError(
            f"Claim belongs to queue {token.queue!r}, not {queue_name!r}"
        )
    return token


def check_delay(delay: float) -> None:
    if delay < 0:
        raise ValueError(f"delay must be >= 0, got {delay}")


def is_stale(claimed_at: float, now: float, delay: float) -> bool:
    """Whether a claim taken at ``claimed_at`` has been held for ``delay`` seconds."""
    return now - claimed_at >= delay


@dataclass
class Claim:
    """One outstanding lease tracked in process."""

    token: ClaimToken
    message: Message
    claimed_at: float


class ClaimTracker:
    """Tracks outstanding claims for backends without their own storage.

    Every claim gets a fresh lease handle, so a message that is requeued and
    claimed again never shares a handle with its earlier claim.

    Args:
        backend: Backend name written into issued tokens.
        clock: Monotonic clock used for staleness. Injectable for tests.
    """

    def __init__(self, backend: str, clock: Callable[[], float] = time.monotonic) -> None:
        self._backend = backend
        self._clock = clock
        self._claims: dict[str, Claim] = {}

    def open(self, queue_name: str, message: Message) -> ClaimToken:
        """Record a new claim on ``message`` and return its token."""
        token = ClaimToken(
            backend=self._backend,
            queue=queue_name,
            handle=uuid4().hex,
            claimed_at=datetime.now(UTC),
        )
        self._claims[token.handle] = Claim(token=token, message=message, claimed_at=self._clock())
        return token

    def close(self, token: ClaimToken) -> Claim:
        """Resolve the claim behind ``token``.

        Raises:
            QueueConfigurationError: If the claim is unknown or already resolved.
        """
        claim = self._claims.pop(token.handle, None)
        if claim is None:
            raise QueueConfigurationError(
                f"No outstanding claim for handle {token.handle!r} on queue {token.queue!r}"
            )
        return claim

    def expire(self, queue_name: str, delay: float) -> list[Claim]:
        """Remove and return the claims on ``queue_name`` held for at least ``delay`` seconds.

        Claims are returned in the order they were taken.
        """
        now = self._clock()
        expired = [
            handle
            for handle, claim in self._claims.items()
            if claim.token.queue == queue_name and is_stale(claim.claimed_at, now, delay)
        ]
        return [self._claims.pop(handle) for handle in expired]

    def count(self, queue_name: str | None = None) -> int:
        if queue_name is None:
            return len(self._claims)
        return sum(1 for claim in self._claims.values() if claim.token.queue == queue_name)

    def clear(self) -> None:
        self._claims.clear()

    def __len__(self) -> int:
        return len(self._claims)
