"""Registry of live sessions keyed by client identifier."""

from typing import Any, Dict, List, Optional

from chat_relay.models.client import Session


class SessionRegistry:
    """Maps each online client identifier to its live session."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def register(self, session: Session) -> Optional[Session]:
        """
        Insert or replace the live session for ``session.client_id``.

        Returns:
            The session that was superseded, if the identifier was already online
        """
        previous = self._sessions.get(session.client_id)
        self._sessions[session.client_id] = session
        if previous is session:
            return None
        return previous

    def unregister(self, client_id: str, connection: Any = None) -> bool:
        """
        Remove the live session for ``client_id``.

        When ``connection`` is given, the entry is only removed if it still
        belongs to that connection.

        Returns:
            True if an entry was removed
        """
        session = self._sessions.get(client_id)
        if session is None:
            return False
        if connection is not None and session.connection is not connection:
            return False
        del self._sessions[client_id]
        return True

    def get(self, client_id: str) -> Optional[Session]:
        return self._sessions.get(client_id)

    def lookup(self, client_id: str) -> Optional[Any]:
        """Return the connection registered for ``client_id``, if any."""
        session = self._sessions.get(client_id)
        return session.connection if session is not None else None

    def is_online(self, client_id: str) -> bool:
        return client_id in self._sessions

    def is_current(self, session: Session) -> bool:
        """Whether ``session`` is the one registered for its identifier."""
        return self._sessions.get(session.client_id) is session

    def sessions(self) -> List[Session]:
        """Registered sessions in connection order."""
        return list(self._sessions.values())

    def client_ids(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._sessions
