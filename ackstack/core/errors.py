"""Queue error types.

Every backend translates its driver, broker, and filesystem failures into
these types so callers depend on one error surface regardless of backend.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager


class QueueError(Exception):
    """Raised when a queue operation fails.

    Attributes:
        original: The backend exception that caused this error, if any.
    """

    def __init__(self, message: str, original: BaseException | None = None):
        self.original = original
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.original is not None:
            return f"{base} (caused by {type(self.original).__name__}: {self.original})"
        return base


class QueueConfigurationError(QueueError):
    """Raised when acknowledge/reject is called without a live claim.

    The delivery was never dequeued from this backend, was issued for another
    queue, or its claim was already resolved or recycled. This is a
    programming error and is never retried.
    """


class QueueFullError(QueueError):
    """Raised when a bounded queue cannot accept more messages."""


@contextmanager
def translate_errors(
    logger: logging.Logger, backend: str, operation: str, queue_name: str
) -> Iterator[None]:
    """Re-raise anything that is not already a QueueError as a QueueError.

    Args:
        logger: Backend logger that records the failure.
        backend: Backend name, for the error message.
        operation: Operation name, for the error message.
        queue_name: Queue the operation targeted.
    """
    try:
        yield
    except QueueError:
        raise
    except Exception as e:
        logger.error(
            f"{operation} failed on queue {queue_name!r}: {e}",
            extra={"backend": backend, "queue": queue_name, "error": str(e)},
        )
        raise QueueError(f"{backend} {operation} failed on queue {queue_name!r}", original=e) from e
