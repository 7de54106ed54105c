"""Routing of inbound chat messages to broadcast or private delivery."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from chat_relay.core.registry import SessionRegistry
from chat_relay.models.client import Session
from chat_relay.models.message import Message, MessageType, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundMessage:
    """Parsed client payload."""

    content: str
    to_user_id: Optional[str] = None


@dataclass(frozen=True)
class Delivery:
    """One outbound copy bound for one session."""

    session: Session
    payload: Dict[str, Any]


@dataclass
class RouteResult:
    """Canonical message for history plus the copies to send."""

    message: Message
    deliveries: List[Delivery] = field(default_factory=list)


def parse_inbound(raw: str) -> InboundMessage:
    """
    Parse a raw client frame.

    A JSON object with a string ``content`` is honoured together with its
    optional ``toUserId``. Anything else is taken as plain text content with
    no target.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return InboundMessage(content=raw)

    if not isinstance(data, dict) or not isinstance(data.get("content"), str):
        return InboundMessage(content=raw)

    target = data.get("toUserId")
    if not isinstance(target, str) or not target.strip():
        target = None
    return InboundMessage(content=data["content"], to_user_id=target)


def decode_frame(frame: Dict[str, Any]) -> str:
    """
    Text carried by an ASGI ``websocket.receive`` message.

    Binary frames are decoded as UTF-8, undecodable bytes replaced.
    """
    if frame.get("text") is not None:
        return frame["text"]
    return (frame.get("bytes") or b"").decode("utf-8", errors="replace")


class MessageRouter:
    """Decides who receives each message and how each copy is labelled."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def route(self, sender: Session, inbound: InboundMessage, timestamp: Optional[str] = None) -> RouteResult:
        """
        Build the canonical message and its per-recipient deliveries.

        Args:
            sender: Session the message arrived on
            inbound: Parsed payload
            timestamp: Message time, defaults to now

        Returns:
            RouteResult whose message is labelled ``private`` or ``received``
        """
        timestamp = timestamp or utc_now()
        if inbound.to_user_id is not None:
            return self._route_private(sender, inbound, timestamp)
        return self._route_broadcast(sender, inbound, timestamp)

    def _route_private(self, sender: Session, inbound: InboundMessage, timestamp: str) -> RouteResult:
        message = Message(
            type=MessageType.PRIVATE,
            content=inbound.content,
            timestamp=timestamp,
            from_user_id=sender.client_id,
            to_user_id=inbound.to_user_id
        )
        result = RouteResult(message=message)
        payload = message.to_dict()

        recipient = self.registry.get(inbound.to_user_id)
        if recipient is None or not recipient.is_open:
            logger.warning(f"Private message from {sender.client_id} to offline client {inbound.to_user_id} dropped")
        elif recipient.connection is not sender.connection:
            result.deliveries.append(Delivery(recipient, payload))

        if sender.is_open:
            result.deliveries.append(Delivery(sender, payload))
        return result

    def _route_broadcast(self, sender: Session, inbound: InboundMessage, timestamp: str) -> RouteResult:
        message = Message(
            type=MessageType.RECEIVED,
            content=inbound.content,
            timestamp=timestamp,
            from_user_id=sender.client_id
        )
        result = RouteResult(message=message)

        received = message.to_dict()
        for session in self.registry.sessions():
            if session.connection is sender.connection or not session.is_open:
                continue
            result.deliveries.append(Delivery(session, received))

        if sender.is_open:
            result.deliveries.append(Delivery(sender, message.relabel(MessageType.SENT).to_dict()))
        return result

    @staticmethod
    def visible_to(message: Message, client_id: str) -> bool:
        """Private messages are only visible to their sender and recipient."""
        if not message.is_private:
            return True
        return client_id in (message.from_user_id, message.to_user_id)

    @staticmethod
    def label_for(message: Message, client_id: str) -> Dict[str, Any]:
        """Wire copy of a stored message as seen by ``client_id``."""
        if message.type == MessageType.RECEIVED and message.from_user_id == client_id:
            return message.relabel(MessageType.SENT).to_dict()
        return message.to_dict()
