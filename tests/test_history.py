"""Unit tests for the HistoryBuffer class."""

import pytest

from chat_relay.core.history import HistoryBuffer
from chat_relay.models.message import Message, MessageType


def make_message(index: int) -> Message:
    return Message(MessageType.RECEIVED, f"message {index}", f"t{index}", from_user_id="a")


def test_default_cap_is_one_hundred():
    """Test the default history size."""
    assert HistoryBuffer().cap == 100


def test_oldest_message_dropped_past_cap():
    """Test that 101 inserts keep the latest 100 in arrival order."""
    history = HistoryBuffer()
    for index in range(101):
        history.append(make_message(index))

    contents = [message.content for message in history.snapshot_all()]
    assert len(history) == 100
    assert "message 0" not in contents
    assert contents == [f"message {index}" for index in range(1, 101)]


def test_length_never_exceeds_cap():
    """Test the cap holds after every append."""
    history = HistoryBuffer(cap=5)
    for index in range(20):
        history.append(make_message(index))
        assert len(history) <= 5


def test_snapshot_is_a_copy():
    """Test that later appends do not change an earlier snapshot."""
    history = HistoryBuffer()
    history.append(make_message(0))
    snapshot = history.snapshot_all()
    history.append(make_message(1))

    assert len(snapshot) == 1
    assert len(history.snapshot_all()) == 2


def test_extend_trims_to_cap():
    """Test bulk seeding keeps only the newest entries."""
    history = HistoryBuffer(cap=3)
    history.extend(make_message(index) for index in range(10))

    assert [message.content for message in history.snapshot_all()] == ["message 7", "message 8", "message 9"]


def test_invalid_cap():
    """Test that a non-positive cap is refused."""
    with pytest.raises(ValueError):
        HistoryBuffer(cap=0)
