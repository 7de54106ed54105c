"""Shared fixtures and fakes for relay tests."""

import json
from typing import Any, List, Optional

import pytest
from starlette.websockets import WebSocketState

from chat_relay.config import DuplicatePolicy
from chat_relay.core.exceptions import PersistenceError
from chat_relay.core.storage import MemoryStore, Persister
from chat_relay.core.websocket_manager import WebSocketManager
from chat_relay.models.client import ConnectionState, Session


class FakeWebSocket:
    """Stand-in for a Starlette WebSocket that records every frame sent to it."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTING
        self.sent: List[Any] = []
        self.close_code: Optional[int] = None

    async def accept(self) -> None:
        self.client_state = WebSocketState.CONNECTED

    async def send_text(self, data: str) -> None:
        if self.client_state != WebSocketState.CONNECTED:
            raise RuntimeError("WebSocket is not connected")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED

    def drop(self) -> None:
        """Simulate the peer going away without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED

    def take(self) -> List[Any]:
        """Return and clear the recorded frames."""
        frames, self.sent = self.sent, []
        return frames

    def messages(self) -> List[dict]:
        """Recorded chat/system messages, excluding control frames."""
        return [
            frame for frame in self.sent
            if isinstance(frame, dict) and frame.get("type") in ("system", "sent", "received", "private")
        ]


class FailingStore(MemoryStore):
    """Store whose writes always fail."""

    def save_messages(self, messages):
        raise PersistenceError("disk full")

    def save_clients(self, clients):
        raise PersistenceError("disk full")


def open_session(client_id: str) -> Session:
    """An open session backed by a connected fake socket."""
    websocket = FakeWebSocket()
    websocket.client_state = WebSocketState.CONNECTED
    return Session(client_id=client_id, connection=websocket, state=ConnectionState.OPEN)


@pytest.fixture
def store():
    """In-memory store."""
    return MemoryStore()


@pytest.fixture
def manager(store):
    """Manager persisting inline to the in-memory store."""
    return WebSocketManager(Persister(store, background=False))


@pytest.fixture
def make_manager(store):
    """Factory for managers with non-default settings."""
    def factory(**kwargs) -> WebSocketManager:
        kwargs.setdefault("duplicate_policy", DuplicatePolicy.ALLOW)
        return WebSocketManager(Persister(store, background=False), **kwargs)
    return factory
