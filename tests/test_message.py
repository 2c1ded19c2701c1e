"""Tests for the Message, ClaimToken and Delivery models."""

import json
from datetime import UTC, datetime

import pytest
from hypothesis import given
from pydantic import ValidationError

from ackstack.core.errors import QueueError
from ackstack.core.message import MAX_PAYLOAD_SIZE, ClaimToken, Delivery, Message
from tests.conftest import json_payloads


@given(payload=json_payloads)
def test_json_form_preserves_message(payload):
    """Whatever a durable backend stores, it must give back the same message."""
    original = Message(payload=payload)
    restored = Message.from_json(original.to_json())

    assert restored == original
    assert restored.id == original.id
    assert restored.timestamp == original.timestamp


def test_defaults_are_generated():
    a, b = Message(), Message()
    assert a.id != b.id
    assert len(a.id) == 36
    assert a.timestamp.tzinfo is not None
    assert a.payload is None


def test_id_is_normalized_to_lower_case():
    message = Message(id="9F1C2D3E-4A5B-4C6D-8E7F-0A1B2C3D4E5F")
    assert message.id == "9f1c2d3e-4a5b-4c6d-8e7f-0a1b2c3d4e5f"


@pytest.mark.parametrize(
    "bad_id",
    [
        "not-a-uuid",
        "",
        # version 1, not 4
        "9f1c2d3e-4a5b-1c6d-8e7f-0a1b2c3d4e5f",
    ],
)
def test_invalid_id_rejected(bad_id):
    with pytest.raises(ValidationError):
        Message(id=bad_id)


def test_message_is_frozen():
    message = Message(payload={"a": 1})
    with pytest.raises(ValidationError):
        message.payload = {"a": 2}


def test_extra_fields_forbidden():
    with pytest.raises(ValidationError):
        Message(payload=1, priority="high")


def test_non_json_payload_rejected():
    with pytest.raises(ValidationError, match="JSON-serializable"):
        Message(payload={"when": datetime.now(UTC)})


def test_oversized_payload_rejected():
    with pytest.raises(ValidationError, match="maximum size"):
        Message(payload="x" * MAX_PAYLOAD_SIZE)


def test_payload_just_under_limit_accepted():
    # json.dumps adds two quote characters
    message = Message(payload="x" * (MAX_PAYLOAD_SIZE - 2))
    assert len(message.payload) == MAX_PAYLOAD_SIZE - 2


@pytest.mark.parametrize("payload", ["plain text", 42, 1.5, [1, "two"], {"charge": 42}, True])
def test_any_json_value_is_a_payload(payload):
    assert Message.from_json(Message(payload=payload).to_json()).payload == payload


def test_from_json_wraps_bad_documents():
    with pytest.raises(QueueError) as exc_info:
        Message.from_json("{not json")
    assert isinstance(exc_info.value.original, ValidationError)
    assert "could not be deserialized" in str(exc_info.value)


def test_from_json_accepts_bytes():
    message = Message(payload={"k": "v"})
    assert Message.from_json(message.to_json().encode("utf-8")) == message


def test_to_json_is_plain_json():
    data = json.loads(Message(payload={"k": "v"}).to_json())
    assert set(data) == {"id", "timestamp", "payload"}


def test_delivery_exposes_message_id():
    message = Message(payload="hello")
    token = ClaimToken(backend="memory", queue="q", handle="abc", claimed_at=datetime.now(UTC))
    delivery = Delivery(message=message, token=token)

    assert delivery.message_id == message.id
    with pytest.raises(ValidationError):
        delivery.token = token


def test_claim_token_keeps_integer_handles():
    token = ClaimToken(backend="file", queue="q", handle=1_700_000_000_123_456_789, claimed_at=datetime.now(UTC))
    assert token.handle == 1_700_000_000_123_456_789
    assert isinstance(token.handle, int)
