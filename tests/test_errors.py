"""Tests for the queue error types and error translation."""

import asyncio
import logging

import pytest

from ackstack.core.errors import (
    QueueConfigurationError,
    QueueError,
    QueueFullError,
    translate_errors,
)

logger = logging.getLogger("ackstack.backends.test")


def test_hierarchy():
    assert issubclass(QueueConfigurationError, QueueError)
    assert issubclass(QueueFullError, QueueError)


def test_str_includes_original():
    error = QueueError("sql enqueue failed", original=OSError("disk full"))
    assert str(error) == "sql enqueue failed (caused by OSError: disk full)"
    assert str(QueueError("plain")) == "plain"


def test_foreign_errors_are_wrapped(caplog):
    original = ConnectionError("refused")

    with caplog.at_level(logging.ERROR, logger="ackstack.backends.test"):
        with pytest.raises(QueueError) as exc_info:
            with translate_errors(logger, "redis", "enqueue", "emails"):
                raise original

    assert exc_info.value.original is original
    assert exc_info.value.__cause__ is original
    assert "redis enqueue failed on queue 'emails'" in str(exc_info.value)
    assert caplog.records[-1].queue == "emails"
    assert caplog.records[-1].backend == "redis"


def test_queue_errors_pass_through_untouched():
    error = QueueConfigurationError("no claim")
    with pytest.raises(QueueConfigurationError) as exc_info:
        with translate_errors(logger, "sql", "acknowledge", "q"):
            raise error
    assert exc_info.value is error


def test_cancellation_is_not_translated():
    with pytest.raises(asyncio.CancelledError):
        with translate_errors(logger, "sql", "dequeue", "q"):
            raise asyncio.CancelledError()
