"""Message model for chat traffic and system notices."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class MessageType(Enum):
    """Recipient-relative label carried by every message on the wire."""
    SYSTEM = "system"
    SENT = "sent"
    RECEIVED = "received"
    PRIVATE = "private"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Message:
    """A single chat message or system notice."""

    type: MessageType
    content: str
    timestamp: str
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None

    @classmethod
    def system(cls, content: str, user_id: Optional[str] = None, timestamp: Optional[str] = None) -> 'Message':
        """Create a system notice about ``user_id``."""
        return cls(
            type=MessageType.SYSTEM,
            content=content,
            timestamp=timestamp or utc_now(),
            from_user_id=user_id
        )

    @property
    def is_private(self) -> bool:
        return self.to_user_id is not None

    def relabel(self, message_type: MessageType) -> 'Message':
        """Return a copy carrying a different type label."""
        return replace(self, type=message_type)

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to its JSON wire form, omitting absent fields."""
        result = {
            'type': self.type.value,
            'content': self.content,
            'timestamp': self.timestamp
        }
        if self.from_user_id is not None:
            result['fromUserId'] = self.from_user_id
        if self.to_user_id is not None:
            result['toUserId'] = self.to_user_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """Create Message instance from its wire form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If the type label is unknown
        """
        return cls(
            type=MessageType(data['type']),
            content=str(data['content']),
            timestamp=str(data['timestamp']),
            from_user_id=data.get('fromUserId'),
            to_user_id=data.get('toUserId')
        )

    def __repr__(self) -> str:
        return f"Message(type={self.type.value!r}, content={self.content!r}, from_user_id={self.from_user_id!r})"
