"""WebSocket connection manager driving the connect, message and disconnect lifecycle."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import WebSocket, status
from starlette.websockets import WebSocketState

from chat_relay.config import DEFAULT_HISTORY_LIMIT, DuplicatePolicy
from chat_relay.core.exceptions import DuplicateSessionError, PersistenceError
from chat_relay.core.history import HistoryBuffer
from chat_relay.core.identity import mint_client_id
from chat_relay.core.presence import PresenceTracker
from chat_relay.core.registry import SessionRegistry
from chat_relay.core.router import MessageRouter, parse_inbound
from chat_relay.core.storage import Persister
from chat_relay.models.client import ConnectionState, Session, StoredClientRecord
from chat_relay.models.message import Message

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Welcome to the chat relay!"

# Seconds to wait for queued frames on shutdown.
SHUTDOWN_DRAIN_SECONDS = 2.0


@dataclass(frozen=True)
class CloseRequest:
    """Queued instruction for a writer to close its connection."""

    reason: str


class WebSocketManager:
    """
    Owns all relay state and applies each connection event to it.

    Events are processed one at a time under a single lock: state changes,
    persistence requests and routing for one event finish before the next
    event starts. Outbound frames are queued per session and written by that
    session's writer task, so a slow peer only delays its own frames.
    """

    def __init__(self, persister: Persister,
                 history_limit: int = DEFAULT_HISTORY_LIMIT,
                 duplicate_policy: DuplicatePolicy = DuplicatePolicy.ALLOW,
                 broadcast_welcome: bool = False,
                 debug: bool = False):
        self.persister = persister
        self.duplicate_policy = duplicate_policy
        self.broadcast_welcome = broadcast_welcome
        self.debug = debug

        self.registry = SessionRegistry()
        self.history = HistoryBuffer(history_limit)
        self.clients: Dict[str, StoredClientRecord] = {}
        self.router = MessageRouter(self.registry)
        self.presence = PresenceTracker(self.registry)
        self._lock = asyncio.Lock()
        self._writing: List[Session] = []

    def load(self) -> None:
        """Seed history and client records from the store."""
        try:
            messages = self.persister.store.load_messages()
            clients = self.persister.store.load_clients()
        except PersistenceError as e:
            logger.error(f"Starting with empty state, could not load persisted data: {e}")
            return

        self.history.extend(messages)
        self.clients.update(clients)
        logger.info(f"Loaded {len(self.history)} messages and {len(self.clients)} client records")

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> Optional[Session]:
        """
        Accept a new WebSocket connection and register the client.

        Args:
            websocket: WebSocket connection
            client_id: Identifier presented by a returning client; minted when absent

        Returns:
            The new session, or None if the connection was rejected
        """
        await websocket.accept()
        session = Session(client_id=client_id or mint_client_id(), connection=websocket)

        async with self._lock:
            try:
                superseded = self._register(session)
            except DuplicateSessionError as e:
                logger.warning(f"Rejecting connection: {e}")
                session.state = ConnectionState.CLOSED
                superseded = None
            else:
                self._start_writer(session)

            if session.is_open:
                if superseded is not None:
                    self._supersede(superseded)

                self.clients[session.client_id] = StoredClientRecord.new(session.client_id)
                self.persister.save_clients(self.clients)
                logger.info(f"Client {session.client_id} connected")

                await self._send(session, {"type": "userId", "userId": session.client_id})
                await self._send(session, self._history_for(session.client_id))

                welcome = Message.system(WELCOME_TEXT, session.client_id)
                self._record(welcome)
                if self.broadcast_welcome:
                    await self._broadcast(welcome.to_dict())
                else:
                    await self._send(session, welcome.to_dict())

                await self.presence.broadcast(self.clients, self._send)

        if not session.is_open:
            await self._close(websocket, "Client already connected")
            return None
        return session

    async def handle_message(self, session: Session, raw: str) -> Optional[Message]:
        """
        Route one inbound frame from ``session``.

        Args:
            session: Session the frame arrived on
            raw: Frame text

        Returns:
            The canonical message appended to history, or None if the session is not open
        """
        async with self._lock:
            if not session.is_open:
                logger.warning(f"Ignoring message from {session.client_id}: session is {session.state.value}")
                return None
            if self.debug:
                logger.info(f"Received from {session.client_id}: {raw}")

            result = self.router.route(session, parse_inbound(raw))
            self._record(result.message)

            session.touch()
            self._touch_client(session.client_id)
            self.persister.save_clients(self.clients)

            for delivery in result.deliveries:
                await self._send(delivery.session, delivery.payload)
            return result.message

    async def disconnect(self, session: Session) -> None:
        """
        Close out a session and tell everyone still online.

        Args:
            session: Session whose connection ended
        """
        session.state = ConnectionState.CLOSED
        self._stop_writer(session)

        async with self._lock:
            if not self.registry.is_current(session):
                logger.info(f"Connection for {session.client_id} closed, it was not the registered one")
                return
            self.registry.unregister(session.client_id)

            session.touch()
            self._touch_client(session.client_id)
            self.persister.save_clients(self.clients)
            logger.info(f"Client {session.client_id} disconnected")

            notice = Message.system(f"User {session.client_id} disconnected", session.client_id)
            self._record(notice)
            await self._broadcast(notice.to_dict())
            await self.presence.broadcast(self.clients, self._send)

    async def drain(self, timeout: Optional[float] = None) -> List[Session]:
        """
        Wait until every queued frame has been written.

        Args:
            timeout: Seconds to wait, unbounded when None

        Returns:
            Sessions whose frames were still pending when the timeout expired
        """
        waits = {asyncio.ensure_future(session.outbox.join()): session for session in self._writing}
        if not waits:
            return []
        done, pending = await asyncio.wait(waits, timeout=timeout)
        for future in pending:
            future.cancel()
        return [waits[future] for future in pending]

    def online_clients(self) -> List[str]:
        return self.registry.client_ids()

    async def close(self) -> None:
        """Write out queued frames, stop the writers and the persistence worker."""
        stalled = await self.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        if stalled:
            logger.warning(f"Dropping queued frames for {len(stalled)} stalled connections")
        for session in list(self._writing):
            self._stop_writer(session)
        self.persister.close()

    def _register(self, session: Session) -> Optional[Session]:
        if self.duplicate_policy == DuplicatePolicy.REJECT and self.registry.is_online(session.client_id):
            raise DuplicateSessionError(session.client_id)
        superseded = self.registry.register(session)
        session.state = ConnectionState.OPEN
        return superseded

    def _supersede(self, previous: Session) -> None:
        if self.duplicate_policy != DuplicatePolicy.EVICT:
            logger.info(f"Connection for {previous.client_id} superseded by a new one")
            return
        logger.info(f"Evicting previous connection for {previous.client_id}")
        previous.state = ConnectionState.CLOSED
        previous.outbox.put_nowait(CloseRequest("Replaced by a newer connection"))

    def _record(self, message: Message) -> None:
        self.history.append(message)
        self.persister.save_messages(self.history.snapshot_all())

    def _touch_client(self, client_id: str) -> None:
        record = self.clients.get(client_id)
        self.clients[client_id] = record.touch() if record is not None else StoredClientRecord.new(client_id)

    def _history_for(self, client_id: str) -> List[Dict[str, Any]]:
        return [
            self.router.label_for(message, client_id)
            for message in self.history.snapshot_all()
            if self.router.visible_to(message, client_id)
        ]

    async def _broadcast(self, payload: Any) -> None:
        for session in self.registry.sessions():
            if session.is_open:
                await self._send(session, payload)

    async def _send(self, session: Session, payload: Any) -> bool:
        """Queue ``payload`` for ``session``; the frame is written by its writer task."""
        if session.state == ConnectionState.CLOSED or session.writer is None:
            return False
        session.outbox.put_nowait(json.dumps(payload))
        return True

    def _start_writer(self, session: Session) -> None:
        session.writer = asyncio.create_task(self._write_loop(session))
        self._writing.append(session)

    def _stop_writer(self, session: Session) -> None:
        if session in self._writing:
            self._writing.remove(session)
        if session.writer is not None and not session.writer.done():
            session.writer.cancel()

    async def _write_loop(self, session: Session) -> None:
        websocket = session.connection
        while True:
            frame = await session.outbox.get()
            try:
                if isinstance(frame, CloseRequest):
                    await self._close(websocket, frame.reason)
                    return
                await self._write(session, frame)
            finally:
                session.outbox.task_done()

    async def _write(self, session: Session, frame: str) -> None:
        websocket = session.connection
        if websocket.client_state != WebSocketState.CONNECTED:
            logger.warning(f"Skipping send to {session.client_id}: connection is closed")
            return
        if self.debug:
            logger.info(f"Sending to {session.client_id}: {frame}")
        try:
            await websocket.send_text(frame)
        except Exception as e:
            logger.error(f"Failed to send message to {session.client_id}: {str(e)}")

    @staticmethod
    async def _close(websocket: WebSocket, reason: str) -> None:
        try:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)
        except Exception as e:
            logger.warning(f"Error closing connection: {str(e)}")
