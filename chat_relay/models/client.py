"""Client models for persisted records and live sessions."""

import asyncio
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from chat_relay.models.message import utc_now


class ConnectionState(Enum):
    """Lifecycle states of a single connection."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class StoredClientRecord:
    """Persisted record of a client, kept after the client goes offline."""

    id: str
    connected_at: str
    last_seen: str

    @classmethod
    def new(cls, client_id: str) -> 'StoredClientRecord':
        now = utc_now()
        return cls(id=client_id, connected_at=now, last_seen=now)

    def touch(self) -> 'StoredClientRecord':
        """Return a copy with ``last_seen`` set to now."""
        return replace(self, last_seen=utc_now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to its JSON wire form."""
        return {
            'id': self.id,
            'connectedAt': self.connected_at,
            'lastSeen': self.last_seen
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StoredClientRecord':
        """Create StoredClientRecord instance from its wire form."""
        return cls(
            id=str(data['id']),
            connected_at=str(data['connectedAt']),
            last_seen=str(data.get('lastSeen', data['connectedAt']))
        )


@dataclass(eq=False)
class Session:
    """Live binding between a client identifier and an open connection."""

    client_id: str
    connection: Any
    connected_at: str = field(default_factory=utc_now)
    last_seen: str = field(default_factory=utc_now)
    state: ConnectionState = ConnectionState.CONNECTING
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    writer: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    def touch(self) -> None:
        self.last_seen = utc_now()

    def __repr__(self) -> str:
        return f"Session(client_id={self.client_id!r}, state={self.state.value!r})"
