"""Unit tests for message parsing and routing."""

import json

import pytest

from chat_relay.core.registry import SessionRegistry
from chat_relay.core.router import InboundMessage, MessageRouter, decode_frame, parse_inbound
from chat_relay.models.client import ConnectionState
from chat_relay.models.message import Message, MessageType
from conftest import open_session


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def sessions(registry):
    """Three online sessions a, b and c."""
    result = {}
    for client_id in ("a", "b", "c"):
        result[client_id] = open_session(client_id)
        registry.register(result[client_id])
    return result


@pytest.fixture
def router(registry):
    return MessageRouter(registry)


def deliveries_by_client(result):
    return [(delivery.session.client_id, delivery.payload["type"]) for delivery in result.deliveries]


@pytest.mark.parametrize("raw, expected", [
    ('{"content": "hi"}', InboundMessage("hi")),
    ('{"content": "psst", "toUserId": "b"}', InboundMessage("psst", "b")),
    ('{"content": "hi", "toUserId": ""}', InboundMessage("hi")),
    ('{"content": "hi", "toUserId": 7}', InboundMessage("hi")),
    ("plain text", InboundMessage("plain text")),
    ('"just a string"', InboundMessage('"just a string"')),
    ('{"toUserId": "b"}', InboundMessage('{"toUserId": "b"}')),
    ("[1, 2]", InboundMessage("[1, 2]")),
])
def test_parse_inbound(raw, expected):
    """Test parsing of well-formed and malformed frames."""
    assert parse_inbound(raw) == expected


@pytest.mark.parametrize("frame, expected", [
    ({"type": "websocket.receive", "text": "hi"}, "hi"),
    ({"type": "websocket.receive", "text": "", "bytes": b"ignored"}, ""),
    ({"type": "websocket.receive", "bytes": b'{"content": "hi"}'}, '{"content": "hi"}'),
    ({"type": "websocket.receive", "text": None, "bytes": "héllo".encode()}, "héllo"),
    ({"type": "websocket.receive", "bytes": b"bad \xff byte"}, "bad \ufffd byte"),
    ({"type": "websocket.receive"}, ""),
])
def test_decode_frame(frame, expected):
    """Test text and binary frames both yield the frame text."""
    assert decode_frame(frame) == expected


def test_broadcast_labels_per_recipient(router, sessions):
    """Test a broadcast reaches everyone else as received and the sender as sent."""
    result = router.route(sessions["a"], InboundMessage("hi"))

    assert deliveries_by_client(result) == [("b", "received"), ("c", "received"), ("a", "sent")]
    assert result.message.type == MessageType.RECEIVED
    assert result.message.from_user_id == "a"
    assert result.message.to_user_id is None


def test_broadcast_never_delivers_twice(router, sessions):
    """Test each connection gets at most one copy."""
    result = router.route(sessions["b"], InboundMessage("hi"))
    connections = [id(delivery.session.connection) for delivery in result.deliveries]

    assert len(connections) == len(set(connections)) == 3


def test_private_to_online_recipient(router, sessions):
    """Test a private message goes only to the recipient and back to the sender."""
    result = router.route(sessions["a"], InboundMessage("secret", "b"))

    assert deliveries_by_client(result) == [("b", "private"), ("a", "private")]
    assert result.message.type == MessageType.PRIVATE
    assert result.message.to_user_id == "b"


def test_private_to_offline_recipient(router, sessions):
    """Test a private message to an unknown client only confirms to the sender."""
    result = router.route(sessions["a"], InboundMessage("secret", "nobody"))

    assert deliveries_by_client(result) == [("a", "private")]
    assert result.message.to_user_id == "nobody"


def test_private_to_self_delivered_once(router, sessions):
    """Test messaging yourself yields a single copy."""
    result = router.route(sessions["a"], InboundMessage("note", "a"))

    assert deliveries_by_client(result) == [("a", "private")]


def test_closed_recipient_treated_as_offline(router, sessions):
    """Test sessions already closed are skipped."""
    sessions["b"].state = ConnectionState.CLOSED

    broadcast = router.route(sessions["a"], InboundMessage("hi"))
    private = router.route(sessions["a"], InboundMessage("secret", "b"))

    assert deliveries_by_client(broadcast) == [("c", "received"), ("a", "sent")]
    assert deliveries_by_client(private) == [("a", "private")]


def test_payload_is_json_serialisable(router, sessions):
    """Test deliveries carry plain dicts."""
    result = router.route(sessions["a"], InboundMessage("hi"), timestamp="t")

    assert json.loads(json.dumps(result.deliveries[0].payload)) == {
        "type": "received", "content": "hi", "timestamp": "t", "fromUserId": "a"
    }


def test_visible_to():
    """Test private messages are hidden from third parties."""
    private = Message(MessageType.PRIVATE, "secret", "t", from_user_id="a", to_user_id="b")
    public = Message(MessageType.RECEIVED, "hi", "t", from_user_id="a")

    assert MessageRouter.visible_to(private, "a")
    assert MessageRouter.visible_to(private, "b")
    assert not MessageRouter.visible_to(private, "c")
    assert MessageRouter.visible_to(public, "c")


def test_label_for_sender_sees_sent():
    """Test replayed broadcasts are relabelled for their sender."""
    public = Message(MessageType.RECEIVED, "hi", "t", from_user_id="a")

    assert MessageRouter.label_for(public, "a")["type"] == "sent"
    assert MessageRouter.label_for(public, "b")["type"] == "received"
