"""Tests for claim validation and the in-process ClaimTracker."""

from datetime import UTC, datetime

import pytest

from ackstack.core.claims import ClaimTracker, check_delay, is_stale, require_claim
from ackstack.core.errors import QueueConfigurationError
from ackstack.core.message import ClaimToken, Delivery, Message


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _delivery(backend: str = "memory", queue: str = "q") -> Delivery:
    return Delivery(
        message=Message(payload=1),
        token=ClaimToken(backend=backend, queue=queue, handle="h", claimed_at=datetime.now(UTC)),
    )


def test_require_claim_returns_token():
    delivery = _delivery()
    assert require_claim(delivery, "memory", "q") is delivery.token


@pytest.mark.parametrize(
    "candidate, match",
    [
        (Message(payload=1), "Expected a Delivery"),
        ({"message": "dict"}, "Expected a Delivery"),
        (None, "Expected a Delivery"),
        (_delivery(backend="sql"), "'sql' backend"),
        (_delivery(queue="other"), "queue 'other'"),
    ],
)
def test_require_claim_refuses(candidate, match):
    with pytest.raises(QueueConfigurationError, match=match):
        require_claim(candidate, "memory", "q")


def test_staleness_is_inclusive():
    assert is_stale(100.0, 110.0, 10)
    assert not is_stale(100.0, 109.9, 10)
    assert is_stale(100.0, 100.0, 0)


def test_check_delay():
    check_delay(0)
    with pytest.raises(ValueError):
        check_delay(-0.1)


def test_every_claim_gets_a_fresh_handle():
    tracker = ClaimTracker("memory")
    message = Message(payload=1)

    first = tracker.open("q", message)
    tracker.close(first)
    second = tracker.open("q", message)

    assert first.handle != second.handle


def test_close_twice_fails():
    tracker = ClaimTracker("memory")
    token = tracker.open("q", Message(payload=1))
    tracker.close(token)

    with pytest.raises(QueueConfigurationError):
        tracker.close(token)


def test_expire_uses_delay_and_queue():
    clock = FakeClock()
    tracker = ClaimTracker("memory", clock=clock)
    old = tracker.open("q", Message(payload="old"))
    clock.now += 50
    tracker.open("q", Message(payload="young"))
    tracker.open("other", Message(payload="elsewhere"))
    clock.now += 20

    expired = tracker.expire("q", delay=60)

    assert [c.token for c in expired] == [old]
    assert tracker.count("q") == 1
    assert tracker.count() == 2
    assert len(tracker) == 2


def test_expire_returns_claims_in_claim_order():
    clock = FakeClock()
    tracker = ClaimTracker("memory", clock=clock)
    tokens = []
    for i in range(3):
        tokens.append(tracker.open("q", Message(payload=i)))
        clock.now += 1

    assert [c.token for c in tracker.expire("q", delay=0)] == tokens
    assert len(tracker) == 0


def test_clear():
    tracker = ClaimTracker("memory")
    tracker.open("q", Message())
    tracker.clear()
    assert len(tracker) == 0
