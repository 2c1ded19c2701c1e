"""Filesystem backend: one directory per queue, claims by atomic rename.

Layout for a queue named ``emails``::

    {directory}/emails/{message_id}.message   queued
    {directory}/emails/{message_id}.process   claimed

Atomicity is exactly that of rename(2) on the underlying filesystem. This is
sound on a single host; it is not on networked filesystems with weak
consistency.
"""

import asyncio
import logging
import os
import re
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import ClassVar
from uuid import uuid4

import aiofiles
import aiofiles.os

from ackstack.core.claims import DEFAULT_RECYCLE_DELAY, check_delay, is_stale, require_claim
from ackstack.core.errors import QueueConfigurationError, QueueError, translate_errors
from ackstack.core.message import ClaimToken, Delivery, Message
from ackstack.core.polling import DEFAULT_POLL_INTERVAL, poll_dequeue

logger = logging.getLogger("ackstack.backends.file")

MESSAGE_SUFFIX = ".message"
PROCESS_SUFFIX = ".process"
TEMP_SUFFIX = ".tmp"

_UNSAFE_NAME_CHARS = re.compile(r"[\\/.]")
# Whole-second and FAT two-second timestamp granularity
_STAMP_BUMPS_NS = (0, 1_000_000_000, 2_000_000_000)


def queue_directory_name(queue_name: str) -> str:
    """Map a queue name to its directory name (``app.emails`` -> ``app-emails``).

    The mapping is not injective: ``app.emails``, ``app/emails`` and
    ``app-emails`` all share one directory and therefore one queue. Keep
    queue names free of ``.``, ``/`` and ``\\`` if they must stay apart.
    """
    return _UNSAFE_NAME_CHARS.sub("-", queue_name)


class FileQueue:
    """Queue backend storing one file per message.

    Dequeue picks the oldest ``*.message`` file by modification time and
    renames it to ``*.process``; whoever's rename succeeds owns the claim.
    The file is stamped with the claim time (atime and mtime) just before
    the rename and that stamp is the claim handle. Each claim's stamp is
    forced to differ from the one the file carried before, so a token from
    an earlier claim of the same message never matches a later one, even on
    filesystems with whole-second timestamps.

    Ordering is best-effort FIFO only: concurrent consumers and coarse file
    timestamps can reorder messages.

    Args:
        directory: Base directory holding one sub-directory per queue.
        permissions: Mode for new message files (subject to the umask).
        poll_interval: Seconds between attempts in dequeue().
    """

    name: ClassVar[str] = "file"

    def __init__(
        self,
        directory: str | Path,
        permissions: int = 0o640,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._base = Path(directory)
        self._permissions = permissions
        self._known_dirs: set[Path] = set()
        self.poll_interval = poll_interval

    @property
    def directory(self) -> Path:
        return self._base

    async def _queue_dir(self, queue_name: str) -> Path:
        directory = self._base / queue_directory_name(queue_name)
        if directory not in self._known_dirs:
            await aiofiles.os.makedirs(directory, exist_ok=True)
            self._known_dirs.add(directory)
        return directory

    def _opener(self, path: str, flags: int) -> int:
        return os.open(path, flags, self._permissions)

    async def _scan(self, directory: Path, suffix: str) -> list[tuple[int, str]]:
        """List ``(mtime_ns, file name)`` for files with ``suffix``, oldest first."""
        entries = []
        for name in await aiofiles.os.listdir(directory):
            if not name.endswith(suffix):
                continue
            try:
                stat = await aiofiles.os.stat(directory / name)
            except FileNotFoundError:
                # Claimed or resolved since listing
                continue
            entries.append((stat.st_mtime_ns, name))
        entries.sort()
        return entries

    async def enqueue(self, queue_name: str, message: Message) -> None:
        with translate_errors(logger, self.name, "enqueue", queue_name):
            directory = await self._queue_dir(queue_name)
            temp_path = directory / f"{message.id}.{uuid4().hex}{TEMP_SUFFIX}"
            async with aiofiles.open(temp_path, "w", encoding="utf-8", opener=self._opener) as f:
                await f.write(message.to_json())
            await aiofiles.os.rename(temp_path, directory / f"{message.id}{MESSAGE_SUFFIX}")
        logger.debug(
            "Enqueued message",
            extra={"backend": self.name, "queue": queue_name, "message_id": message.id},
        )

    async def dequeue_nonblocking(self, queue_name: str) -> Delivery | None:
        with translate_errors(logger, self.name, "dequeue", queue_name):
            directory = await self._queue_dir(queue_name)
            for queued_at, file_name in await self._scan(directory, MESSAGE_SUFFIX):
                source = directory / file_name
                target = source.with_suffix(PROCESS_SUFFIX)
                try:
                    # rename keeps the stamp, so the claimed file is never seen unstamped
                    await self._stamp(source, queued_at)
                    await aiofiles.os.rename(source, target)
                    stamp = (await aiofiles.os.stat(target)).st_mtime_ns
                    async with aiofiles.open(target, encoding="utf-8") as f:
                        content = await f.read()
                except FileNotFoundError:
                    # Another consumer won the rename, or a recycler moved it
                    continue

                message = Message.from_json(content)
                token = ClaimToken(
                    backend=self.name,
                    queue=queue_name,
                    handle=stamp,
                    claimed_at=datetime.fromtimestamp(stamp / 1e9, UTC),
                )
                return Delivery(message=message, token=token)
        return None

    async def _stamp(self, path: Path, previous: int) -> None:
        """Set atime/mtime to now, as a value the filesystem keeps distinct from ``previous``.

        ``previous`` is the stamp the file carried before this claim: its
        enqueue time, or the stamp of the claim it was requeued from.
        Filesystems that round timestamps to whole seconds get the stamp
        pushed forward until it differs.
        """
        now = max(time.time_ns(), previous + 1)
        for bump in _STAMP_BUMPS_NS:
            await asyncio.to_thread(os.utime, path, ns=(now + bump, now + bump))
            if (await aiofiles.os.stat(path)).st_mtime_ns != previous:
                return
        raise QueueError(f"Filesystem under {self._base} cannot keep distinct claim stamps")

    async def _claimed_path(self, queue_name: str, message_id: str, token: ClaimToken) -> Path:
        directory = await self._queue_dir(queue_name)
        path = directory / f"{message_id}{PROCESS_SUFFIX}"
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            stat = None
        if stat is None or stat.st_mtime_ns != token.handle:
            raise QueueConfigurationError(
                f"No outstanding claim for message {message_id} on queue {queue_name!r}"
            )
        return path

    async def acknowledge(self, queue_name: str, delivery: Delivery) -> None:
        token = require_claim(delivery, self.name, queue_name)
        with translate_errors(logger, self.name, "acknowledge", queue_name):
            path = await self._claimed_path(queue_name, delivery.message.id, token)
            await aiofiles.os.remove(path)

    async def reject(self, queue_name: str, delivery: Delivery, requeue: bool = False) -> None:
        token = require_claim(delivery, self.name, queue_name)
        with translate_errors(logger, self.name, "reject", queue_name):
            path = await self._claimed_path(queue_name, delivery.message.id, token)
            if requeue:
                await aiofiles.os.rename(path, path.with_suffix(MESSAGE_SUFFIX))
            else:
                await aiofiles.os.remove(path)

    async def dequeue(self, queue_name: str, timeout: float = 0) -> Delivery | None:
        return await poll_dequeue(
            lambda: self.dequeue_nonblocking(queue_name), timeout, self.poll_interval
        )

    async def recycle_messages(self, queue_name: str, delay: float = DEFAULT_RECYCLE_DELAY) -> int:
        """Rename ``*.process`` files stamped at least ``delay`` seconds ago back to ``*.message``."""
        check_delay(delay)
        recycled = 0
        with translate_errors(logger, self.name, "recycle", queue_name):
            directory = await self._queue_dir(queue_name)
            now = time.time()
            for stamp, file_name in await self._scan(directory, PROCESS_SUFFIX):
                if not is_stale(stamp / 1e9, now, delay):
                    continue
                path = directory / file_name
                try:
                    await aiofiles.os.rename(path, path.with_suffix(MESSAGE_SUFFIX))
                except FileNotFoundError:
                    # Acknowledged or rejected since the scan
                    continue
                recycled += 1
                logger.warning(
                    "Recycled stale claim",
                    extra={
                        "backend": self.name,
                        "queue": queue_name,
                        "message_id": path.stem,
                        "handle": stamp,
                    },
                )
        return recycled

    async def close(self) -> None:
        self._known_dirs.clear()
