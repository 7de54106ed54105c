"""Presence tracking derived from the session registry."""

import logging
from typing import Any, Awaitable, Callable, Dict, List

from chat_relay.core.registry import SessionRegistry
from chat_relay.models.client import Session, StoredClientRecord

logger = logging.getLogger(__name__)

SendFunc = Callable[[Session, Any], Awaitable[bool]]


class PresenceTracker:
    """Recomputes the online user list on demand and pushes it to every session."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def snapshot(self, clients: Dict[str, StoredClientRecord]) -> List[StoredClientRecord]:
        """
        Records of the clients that currently have a live session.

        Args:
            clients: Persisted client records keyed by identifier

        Returns:
            Records in connection order
        """
        records = []
        for client_id in self.registry.client_ids():
            record = clients.get(client_id)
            if record is None:
                logger.warning(f"Online client {client_id} has no stored record")
                continue
            records.append(record)
        return records

    def message(self, clients: Dict[str, StoredClientRecord]) -> Dict[str, Any]:
        return {
            "type": "userList",
            "users": [record.to_dict() for record in self.snapshot(clients)]
        }

    async def broadcast(self, clients: Dict[str, StoredClientRecord], send: SendFunc) -> int:
        """
        Send the current user list to every open session.

        Returns:
            Number of sessions the list was delivered to
        """
        payload = self.message(clients)
        delivered = 0
        for session in self.registry.sessions():
            if not session.is_open:
                continue
            if await send(session, payload):
                delivered += 1
        return delivered
