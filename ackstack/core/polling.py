"""Dequeue-with-timeout driver shared by every backend.

Backends only implement a non-blocking claim; blocking dequeue is this
polling loop layered on top of it.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from ackstack.core.message import Delivery

# Seconds between non-blocking attempts
DEFAULT_POLL_INTERVAL = 1.0


async def poll_dequeue(
    attempt: Callable[[], Awaitable[Delivery | None]],
    timeout: float = 0,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Delivery | None:
    """Call ``attempt`` until it returns a delivery or ``timeout`` elapses.

    Args:
        attempt: Coroutine function performing one non-blocking dequeue.
        timeout: Seconds to keep polling. 0 means poll forever.
        poll_interval: Seconds to sleep between attempts.

    Returns:
        The first delivery obtained, or None once the timeout has elapsed.
        The timeout is measured in wall-clock time and is advisory: a slow
        attempt can overrun it.
    """
    if timeout < 0:
        raise ValueError(f"timeout must be >= 0, got {timeout}")
    if poll_interval <= 0:
        raise ValueError(f"poll_interval must be > 0, got {poll_interval}")

    start = time.monotonic()
    while True:
        delivery = await attempt()
        if delivery is not None:
            return delivery

        if timeout == 0:
            await asyncio.sleep(poll_interval)
            continue

        remaining = timeout - (time.monotonic() - start)
        if remaining <= 0:
            return None
        await asyncio.sleep(min(poll_interval, remaining))
