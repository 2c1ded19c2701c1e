"""JSON log lines for ackstack.

Library modules log through ``logging.getLogger("ackstack.<module>")`` and
never install handlers; entry points call configure_logging() once.
"""

import json
import logging
from datetime import UTC, datetime
from typing import IO, Any

ROOT_LOGGER_NAME = "ackstack"

# Emitted right after the fixed keys, in this order, when present on a record
QUEUE_FIELDS = ("backend", "queue", "message_id", "handle", "recycled")

# Attributes every LogRecord carries (taskName included on 3.12+)
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys() | {"message", "asctime"}
)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's UTC creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        entry.update({f: getattr(record, f) for f in QUEUE_FIELDS if hasattr(record, f)})
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and key not in entry
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)

        try:
            return json.dumps(entry, default=str)
        except ValueError:
            # Circular extra values
            return str(entry)


def configure_logging(level: int | str = logging.INFO, stream: IO[str] | None = None) -> logging.Logger:
    """Send everything under the ``ackstack`` logger to ``stream`` as JSON.

    Safe to call more than once: the handler is installed once and later
    calls only change the level. ``stream`` defaults to stderr.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
    return root
