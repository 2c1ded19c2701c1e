"""Redis Streams backend.

Each queue is a stream ``{stream_prefix}:{queue}`` read through one consumer
group. Claiming is XREADGROUP (the entry joins the group's pending list).
Settling a claim runs one server-side script, so XACK, the optional re-add
of a requeued copy and XDEL happen together or not at all. Streams have no
visibility timeout, so stuck entries are recovered by recycle_messages:

- XPENDING with IDLE finds entries delivered at least ``delay`` ago
- XCLAIM moves them to a recycler consumer (atomic; a competing sweep loses)
- each one is settled with its body re-added as a fresh entry
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ClassVar
from urllib.parse import urlparse, urlunparse
from uuid import uuid4

from ackstack.core.claims import DEFAULT_RECYCLE_DELAY, check_delay, require_claim
from ackstack.core.errors import QueueConfigurationError, translate_errors
from ackstack.core.message import ClaimToken, Delivery, Message
from ackstack.core.polling import DEFAULT_POLL_INTERVAL, poll_dequeue

logger = logging.getLogger("ackstack.backends.redis")

MESSAGE_FIELD = "message"

# KEYS[1] stream; ARGV: group, entry id, body to re-add ('' for none), body field.
# Returns 0 when the entry was not pending, leaving the stream untouched.
SETTLE_SCRIPT = """
local acked = redis.call('XACK', KEYS[1], ARGV[1], ARGV[2])
if acked == 0 then
    return 0
end
if ARGV[3] ~= '' then
    redis.call('XADD', KEYS[1], '*', ARGV[4], ARGV[3])
end
redis.call('XDEL', KEYS[1], ARGV[2])
return 1
"""


def _sanitize_url(url: str) -> str:
    """Mask password in Redis URL for logging."""
    parsed = urlparse(url)
    if parsed.password:
        netloc = f"{parsed.username or ''}:****@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    return f"{parsed.hostname}:{parsed.port or 6379}"


@dataclass
class RedisMetrics:
    """Redis backend counters."""

    enqueued: int = 0
    claimed: int = 0
    acknowledged: int = 0
    rejected: int = 0
    recycled: int = 0
    reconnections: int = 0


class RedisQueue:
    """Queue backend on Redis Streams with consumer groups.

    Args:
        url: Redis connection URL. Ignored when ``client`` is given.
        client: An existing ``redis.asyncio.Redis`` (created with
            ``decode_responses=True``) to use instead of connecting.
            Not closed by close().
        stream_prefix: Prefix for stream keys.
        consumer_group: Consumer group shared by every consumer of a queue.
        consumer_name: Unique consumer name (auto-generated if None).
        pool_size: Connection pool size.
        recycle_batch: Pending entries inspected per XPENDING page.
        poll_interval: Seconds between attempts in dequeue().
    """

    name: ClassVar[str] = "redis"

    def __init__(
        self,
        url: str | None = None,
        client: Any = None,
        stream_prefix: str = "ackstack",
        consumer_group: str = "ackstack",
        consumer_name: str | None = None,
        pool_size: int = 10,
        recycle_batch: int = 100,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if url is None and client is None:
            raise ValueError("RedisQueue needs a redis url or a client")
        self._url = url
        self._url_safe = _sanitize_url(url) if url is not None else "injected client"
        self.stream_prefix = stream_prefix
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name or f"consumer-{uuid4().hex[:8]}"
        self.recycler_name = f"{self.consumer_group}-recycler"
        self._pool_size = pool_size
        self._recycle_batch = recycle_batch
        self.poll_interval = poll_interval

        self._redis: Any = client
        self._owns_client = client is None
        self._connected = client is not None
        self._groups: set[str] = set()
        self._settle_script: Any = None
        self._script_client: Any = None
        self._metrics = RedisMetrics()
        self._conn_lock = asyncio.Lock()

    @property
    def metrics(self) -> RedisMetrics:
        return self._metrics

    def stream_key(self, queue_name: str) -> str:
        return f"{self.stream_prefix}:{queue_name}"

    async def _get_client(self) -> Any:
        """Return a live pooled client, reconnecting if the last one died."""
        if not self._owns_client:
            return self._redis

        if self._redis is not None:
            try:
                await self._redis.ping()
                return self._redis
            except Exception as e:
                logger.warning(f"Redis connection lost: {e}, reconnecting...")

        try:
            from redis.asyncio import ConnectionPool, Redis
        except ImportError as e:
            raise ImportError("Install redis: pip install ackstack[redis]") from e

        async with self._conn_lock:
            # Another coroutine may have reconnected while we waited
            if self._redis is not None:
                try:
                    await self._redis.ping()
                    return self._redis
                except Exception as e:
                    logger.debug(f"Stale Redis client: {e}")
                    old_redis, self._redis = self._redis, None
                    await old_redis.aclose()

            pool = ConnectionPool.from_url(
                self._url, max_connections=self._pool_size, decode_responses=True
            )
            new_redis = Redis(connection_pool=pool)
            try:
                await new_redis.ping()
            except Exception:
                await new_redis.aclose()
                raise

            self._redis = new_redis
            if self._connected:
                self._metrics.reconnections += 1
                # The server may have been flushed; re-check groups
                self._groups.clear()
                logger.info(f"Reconnected to Redis at {self._url_safe}")
            else:
                logger.info(f"Connected to Redis at {self._url_safe}")
            self._connected = True
            return self._redis

    async def _client_for(self, queue_name: str) -> Any:
        """Return a client with the queue's stream and consumer group in place."""
        redis = await self._get_client()
        stream = self.stream_key(queue_name)
        if stream in self._groups:
            return redis
        try:
            await redis.xgroup_create(stream, self.consumer_group, id="0", mkstream=True)
            logger.info(f"Created consumer group '{self.consumer_group}' on '{stream}'")
        except Exception as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.debug(f"Consumer group '{self.consumer_group}' already exists on '{stream}'")
        self._groups.add(stream)
        return redis

    async def enqueue(self, queue_name: str, message: Message) -> None:
        with translate_errors(logger, self.name, "enqueue", queue_name):
            redis = await self._client_for(queue_name)
            await redis.xadd(self.stream_key(queue_name), {MESSAGE_FIELD: message.to_json()})
        self._metrics.enqueued += 1
        logger.debug(
            "Enqueued message",
            extra={"backend": self.name, "queue": queue_name, "message_id": message.id},
        )

    async def dequeue_nonblocking(self, queue_name: str) -> Delivery | None:
        stream = self.stream_key(queue_name)
        with translate_errors(logger, self.name, "dequeue", queue_name):
            redis = await self._client_for(queue_name)
            response = await redis.xreadgroup(
                groupname=self.consumer_group,
                consumername=self.consumer_name,
                streams={stream: ">"},
                count=1,
            )
            if not response:
                return None
            _, entries = response[0]
            if not entries:
                return None
            entry_id, fields = entries[0]
            message = Message.from_json(fields[MESSAGE_FIELD])

        self._metrics.claimed += 1
        token = ClaimToken(
            backend=self.name, queue=queue_name, handle=entry_id, claimed_at=datetime.now(UTC)
        )
        return Delivery(message=message, token=token)

    async def dequeue(self, queue_name: str, timeout: float = 0) -> Delivery | None:
        return await poll_dequeue(
            lambda: self.dequeue_nonblocking(queue_name), timeout, self.poll_interval
        )

    async def _settle(self, redis: Any, stream: str, entry_id: str, requeue_body: str | None) -> bool:
        """Acknowledge and delete a pending entry, re-adding ``requeue_body`` if given.

        Returns False, with nothing changed, when the entry was not pending.
        """
        if self._script_client is not redis:
            self._settle_script = redis.register_script(SETTLE_SCRIPT)
            self._script_client = redis
        settled = await self._settle_script(
            keys=[stream],
            args=[self.consumer_group, entry_id, requeue_body or "", MESSAGE_FIELD],
        )
        return bool(settled)

    def _no_claim(self, queue_name: str, token: ClaimToken) -> QueueConfigurationError:
        return QueueConfigurationError(
            f"No outstanding claim for entry {token.handle!r} on queue {queue_name!r}"
        )

    async def acknowledge(self, queue_name: str, delivery: Delivery) -> None:
        token = require_claim(delivery, self.name, queue_name)
        with translate_errors(logger, self.name, "acknowledge", queue_name):
            redis = await self._get_client()
            if not await self._settle(redis, self.stream_key(queue_name), token.handle, None):
                raise self._no_claim(queue_name, token)
        self._metrics.acknowledged += 1

    async def reject(self, queue_name: str, delivery: Delivery, requeue: bool = False) -> None:
        token = require_claim(delivery, self.name, queue_name)
        body = delivery.message.to_json() if requeue else None
        with translate_errors(logger, self.name, "reject", queue_name):
            redis = await self._get_client()
            if not await self._settle(redis, self.stream_key(queue_name), token.handle, body):
                raise self._no_claim(queue_name, token)
        self._metrics.rejected += 1

    async def _stale_entries(self, redis: Any, stream: str, idle_ms: int) -> list[str]:
        """Page through the pending list for entries idle at least ``idle_ms``."""
        stale: list[str] = []
        start = "-"
        while True:
            page = await redis.xpending_range(
                stream,
                self.consumer_group,
                min=start,
                max="+",
                count=self._recycle_batch,
                idle=idle_ms,
            )
            stale.extend(entry["message_id"] for entry in page)
            if len(page) < self._recycle_batch:
                return stale
            start = f"({page[-1]['message_id']}"

    async def recycle_messages(self, queue_name: str, delay: float = DEFAULT_RECYCLE_DELAY) -> int:
        """Re-add entries pending for at least ``delay`` seconds as fresh entries."""
        check_delay(delay)
        idle_ms = int(delay * 1000)
        stream = self.stream_key(queue_name)
        recycled = 0
        with translate_errors(logger, self.name, "recycle", queue_name):
            redis = await self._client_for(queue_name)
            stale = await self._stale_entries(redis, stream, idle_ms)
            if not stale:
                return 0

            claimed = await redis.xclaim(
                stream,
                self.consumer_group,
                self.recycler_name,
                min_idle_time=idle_ms,
                message_ids=stale,
            )
            for entry_id, fields in claimed:
                # A deleted entry stays pending with no fields; settle it without a copy
                body = fields.get(MESSAGE_FIELD) if fields else None
                settled = await self._settle(redis, stream, entry_id, body)
                if settled and body is not None:
                    recycled += 1
                    logger.warning(
                        "Recycled stale claim",
                        extra={"backend": self.name, "queue": queue_name, "handle": entry_id},
                    )

        self._metrics.recycled += recycled
        return recycled

    async def delete_queue(self, queue_name: str) -> None:
        """Delete a queue's stream and consumer group."""
        stream = self.stream_key(queue_name)
        with translate_errors(logger, self.name, "delete", queue_name):
            redis = await self._get_client()
            await redis.delete(stream)
        self._groups.discard(stream)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is None:
            return
        if self._owns_client:
            await self._redis.aclose()
            self._redis = None
            logger.info("Closed Redis connection")
        self._groups.clear()
        self._settle_script = None
        self._script_client = None
