"""Relational backend: one table, claims by conditional UPDATE.

Every message is a row. A row is claimable while its ``handle`` is NULL; a
consumer claims it by writing a fresh handle with a single UPDATE whose
``WHERE handle IS NULL`` predicate the database re-checks under its row
lock, so at most one concurrent caller can win any row. Resolved rows are
kept with status ``acknowledged`` or ``rejected`` as an audit trail.

All timestamps come from the database clock (CURRENT_TIMESTAMP), never from
the client, so recycling is not skewed by differing host clocks.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, ClassVar
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    insert,
    literal,
    select,
    text,
    update,
)
from sqlalchemy.dialects.mysql import LONGTEXT
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.sql.base import Executable

from ackstack.core.claims import DEFAULT_RECYCLE_DELAY, check_delay, require_claim
from ackstack.core.errors import QueueConfigurationError, translate_errors
from ackstack.core.message import ClaimToken, Delivery, Message
from ackstack.core.polling import DEFAULT_POLL_INTERVAL, poll_dequeue

logger = logging.getLogger("ackstack.backends.sql")

DEFAULT_TABLE = "message_queue"

STATUS_QUEUED = "queued"
STATUS_DISPATCHED = "dispatched"
STATUS_ACKNOWLEDGED = "acknowledged"
STATUS_REJECTED = "rejected"

_MYSQL_DIALECTS = frozenset({"mysql", "mariadb"})
# Dialects whose FOR UPDATE SKIP LOCKED may sit in an UPDATE sub-select
_SKIP_LOCKED_DIALECTS = frozenset({"postgresql"})


def build_queue_table(metadata: MetaData, name: str = DEFAULT_TABLE) -> Table:
    """Define the queue table on ``metadata``."""
    return Table(
        name,
        metadata,
        Column(
            "id",
            BigInteger().with_variant(Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        Column("queue", String(255), nullable=False, index=True),
        Column("handle", String(36), nullable=True, index=True),
        Column("message", Text().with_variant(LONGTEXT, "mysql", "mariadb"), nullable=False),
        Column("status", String(12), nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False),
    )


class SqlQueue:
    """Queue backend storing messages in a relational table.

    Args:
        url: SQLAlchemy async database URL (e.g. ``sqlite+aiosqlite:///queue.db``,
            ``postgresql+asyncpg://...``). Ignored when ``engine`` is given.
        engine: An existing AsyncEngine to share. Not disposed by close().
        table: Table name.
        poll_interval: Seconds between attempts in dequeue().
    """

    name: ClassVar[str] = "sql"

    def __init__(
        self,
        url: str | None = None,
        engine: AsyncEngine | None = None,
        table: str = DEFAULT_TABLE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if engine is None and url is None:
            raise ValueError("SqlQueue needs a database url or an engine")
        self._owns_engine = engine is None
        self._engine = engine if engine is not None else create_async_engine(url)
        self._metadata = MetaData()
        self._table = build_queue_table(self._metadata, table)
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()
        self.poll_interval = poll_interval

    @property
    def table(self) -> Table:
        return self._table

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_schema(self) -> None:
        """Create the queue table and its indexes if they do not exist."""
        async with self._schema_lock:
            if self._schema_ready:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(self._metadata.create_all, checkfirst=True)
            self._schema_ready = True
            logger.debug("Queue schema ready", extra={"backend": self.name, "table": self._table.name})

    async def _connect(self) -> AsyncEngine:
        if not self._schema_ready:
            await self.create_schema()
        return self._engine

    async def enqueue(self, queue_name: str, message: Message) -> None:
        with translate_errors(logger, self.name, "enqueue", queue_name):
            engine = await self._connect()
            async with engine.begin() as conn:
                await conn.execute(
                    insert(self._table).values(
                        queue=queue_name,
                        message=message.to_json(),
                        status=STATUS_QUEUED,
                        created_at=func.current_timestamp(),
                        updated_at=func.current_timestamp(),
                    )
                )
        logger.debug(
            "Enqueued message",
            extra={"backend": self.name, "queue": queue_name, "message_id": message.id},
        )

    def _claim_statement(self, dialect: Dialect, queue_name: str, handle: str) -> Executable:
        t = self._table
        if dialect.name in _MYSQL_DIALECTS:
            # MySQL rejects a sub-select on the updated table; UPDATE ... ORDER BY ... LIMIT
            # is its idiom, and Core's update() cannot render the ORDER BY
            quote = dialect.identifier_preparer.quote
            return text(
                f"UPDATE {dialect.identifier_preparer.format_table(t)} "
                f"SET {quote('handle')} = :handle, {quote('status')} = :status, "
                f"{quote('updated_at')} = CURRENT_TIMESTAMP "
                f"WHERE {quote('queue')} = :queue AND {quote('handle')} IS NULL "
                f"ORDER BY {quote('id')} LIMIT 1"
            ).bindparams(handle=handle, status=STATUS_DISPATCHED, queue=queue_name)

        # Aliased so the sub-select is not correlated to the UPDATE target
        pick = t.alias("candidate")
        candidate = (
            select(pick.c.id)
            .where(pick.c.queue == queue_name, pick.c.handle.is_(None))
            .order_by(pick.c.id)
            .limit(1)
        )
        if dialect.name in _SKIP_LOCKED_DIALECTS:
            candidate = candidate.with_for_update(skip_locked=True)
        return (
            update(t)
            .where(t.c.id == candidate.scalar_subquery(), t.c.handle.is_(None))
            .values(handle=handle, status=STATUS_DISPATCHED, updated_at=func.current_timestamp())
        )

    async def dequeue_nonblocking(self, queue_name: str) -> Delivery | None:
        handle = str(uuid4())
        with translate_errors(logger, self.name, "dequeue", queue_name):
            engine = await self._connect()
            async with engine.begin() as conn:
                result = await conn.execute(self._claim_statement(conn.dialect, queue_name, handle))
                if result.rowcount == 0:
                    return None
                row = (
                    await conn.execute(
                        select(self._table.c.message, self._table.c.updated_at).where(
                            self._table.c.handle == handle
                        )
                    )
                ).one()
            message = Message.from_json(row.message)

        logger.debug(
            "Claimed message",
            extra={
                "backend": self.name,
                "queue": queue_name,
                "message_id": message.id,
                "handle": handle,
            },
        )
        token = ClaimToken(
            backend=self.name, queue=queue_name, handle=handle, claimed_at=row.updated_at
        )
        return Delivery(message=message, token=token)

    async def dequeue(self, queue_name: str, timeout: float = 0) -> Delivery | None:
        return await poll_dequeue(
            lambda: self.dequeue_nonblocking(queue_name), timeout, self.poll_interval
        )

    async def _resolve(self, conn: AsyncConnection, token: ClaimToken, status: str) -> None:
        """Move the dispatched row behind ``token`` to ``status``."""
        t = self._table
        result = await conn.execute(
            update(t)
            .where(t.c.handle == token.handle, t.c.status == STATUS_DISPATCHED)
            .values(status=status, updated_at=func.current_timestamp())
        )
        if result.rowcount == 0:
            raise QueueConfigurationError(
                f"No outstanding claim for handle {token.handle!r} on queue {token.queue!r}"
            )

    async def acknowledge(self, queue_name: str, delivery: Delivery) -> None:
        token = require_claim(delivery, self.name, queue_name)
        with translate_errors(logger, self.name, "acknowledge", queue_name):
            engine = await self._connect()
            async with engine.begin() as conn:
                await self._resolve(conn, token, STATUS_ACKNOWLEDGED)

    def _requeue_copies(self, *criteria: Any) -> Any:
        """INSERT ... SELECT fresh queued rows from the rows matching ``criteria``."""
        t = self._table
        return insert(t).from_select(
            ["queue", "message", "status", "created_at", "updated_at"],
            select(
                t.c.queue,
                t.c.message,
                literal(STATUS_QUEUED, String(12)),
                func.current_timestamp(),
                func.current_timestamp(),
            )
            .where(*criteria)
            .order_by(t.c.id),
        )

    async def reject(self, queue_name: str, delivery: Delivery, requeue: bool = False) -> None:
        token = require_claim(delivery, self.name, queue_name)
        with translate_errors(logger, self.name, "reject", queue_name):
            engine = await self._connect()
            async with engine.begin() as conn:
                await self._resolve(conn, token, STATUS_REJECTED)
                if requeue:
                    await conn.execute(self._requeue_copies(self._table.c.handle == token.handle))

    async def recycle_messages(self, queue_name: str, delay: float = DEFAULT_RECYCLE_DELAY) -> int:
        """Requeue dispatched rows whose claim is at least ``delay`` seconds old.

        When using SqlQueue, have a separate process call this regularly,
        for instance a cron job every few minutes.
        """
        check_delay(delay)
        t = self._table
        with translate_errors(logger, self.name, "recycle", queue_name):
            engine = await self._connect()
            async with engine.begin() as conn:
                now = await conn.scalar(select(func.current_timestamp()))
                cutoff = now - timedelta(seconds=delay)
                stale = (
                    select(t.c.id)
                    .where(
                        t.c.queue == queue_name,
                        t.c.status == STATUS_DISPATCHED,
                        t.c.updated_at <= cutoff,
                    )
                    .order_by(t.c.id)
                )
                if conn.dialect.name in _SKIP_LOCKED_DIALECTS | _MYSQL_DIALECTS:
                    stale = stale.with_for_update(skip_locked=True)
                ids = list((await conn.execute(stale)).scalars())
                if not ids:
                    return 0

                await conn.execute(self._requeue_copies(t.c.id.in_(ids)))
                await conn.execute(
                    update(t)
                    .where(t.c.id.in_(ids))
                    .values(status=STATUS_REJECTED, updated_at=func.current_timestamp())
                )

        logger.warning(
            f"Recycled {len(ids)} stale claims",
            extra={"backend": self.name, "queue": queue_name, "recycled": len(ids)},
        )
        return len(ids)

    async def status_counts(self, queue_name: str) -> dict[str, int]:
        """Return the number of rows per status for ``queue_name``."""
        t = self._table
        with translate_errors(logger, self.name, "status_counts", queue_name):
            engine = await self._connect()
            async with engine.connect() as conn:
                rows = await conn.execute(
                    select(t.c.status, func.count())
                    .where(t.c.queue == queue_name)
                    .group_by(t.c.status)
                )
                return {status: count for status, count in rows}

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()
