"""Operator commands for ackstack queues.

Usage:
  python -m ackstack recycle emails reports --delay 300
  python -m ackstack create-schema

The backend comes from ACKSTACK_* environment variables (see QueueSettings).
Run ``recycle`` from cron or another scheduler; it sweeps once and exits.
"""

import argparse
import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from ackstack.core.errors import QueueError
from ackstack.core.logging import configure_logging
from ackstack.core.recycler import Recycler
from ackstack.factory import create_queue
from ackstack.settings import QueueSettings

logger = logging.getLogger("ackstack.cli")


async def run_recycle(settings: QueueSettings, queue_names: list[str], delay: float) -> dict[str, int]:
    queue = create_queue(settings)
    try:
        return await Recycler(queue, queue_names, delay).sweep()
    finally:
        await queue.close()


async def run_create_schema(settings: QueueSettings) -> bool:
    """Create the SQL table; returns False when the backend has no schema."""
    if settings.backend != "sql":
        logger.info(f"The {settings.backend!r} backend has no schema to create")
        return False

    queue = create_queue(settings)
    try:
        await queue.create_schema()
    finally:
        await queue.close()
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ackstack", description="ackstack queue maintenance")
    commands = parser.add_subparsers(dest="command", required=True)

    recycle = commands.add_parser("recycle", help="Requeue messages whose claim has gone stale")
    recycle.add_argument("queues", nargs="+", metavar="QUEUE", help="Queue names to sweep")
    recycle.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Claim age in seconds before recycling (default: ACKSTACK_RECYCLE_DELAY or 600)",
    )

    commands.add_parser("create-schema", help="Create the SQL queue table if missing")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = QueueSettings()
    except ValidationError as e:
        print(f"Invalid ackstack settings:\n{e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "recycle":
            delay = settings.recycle_delay if args.delay is None else args.delay
            if delay < 0:
                print("--delay must be >= 0", file=sys.stderr)
                return 2
            results = asyncio.run(run_recycle(settings, args.queues, delay))
            for queue_name, count in results.items():
                print(json.dumps({"queue": queue_name, "recycled": count}))
        else:
            created = asyncio.run(run_create_schema(settings))
            print(json.dumps({"backend": settings.backend, "schema": created}))
    except QueueError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
