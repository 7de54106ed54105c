"""Bounded message history replayed to new clients."""

from collections import deque
from typing import Iterable, List

from chat_relay.config import DEFAULT_HISTORY_LIMIT
from chat_relay.models.message import Message


class HistoryBuffer:
    """Append-only log holding the most recent ``cap`` messages in arrival order."""

    def __init__(self, cap: int = DEFAULT_HISTORY_LIMIT):
        if cap < 1:
            raise ValueError(f"History cap must be positive, got {cap}")
        self._messages = deque(maxlen=cap)

    @property
    def cap(self) -> int:
        return self._messages.maxlen

    def append(self, message: Message) -> None:
        """Add a message at the tail, dropping the oldest once the cap is exceeded."""
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        """Append several messages in order; used to seed from persistence."""
        self._messages.extend(messages)

    def snapshot_all(self) -> List[Message]:
        """Return a copy of the buffered messages, oldest first."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
