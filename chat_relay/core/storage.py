"""Persistence for message history and client records."""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from chat_relay.core.exceptions import PersistenceError
from chat_relay.models.client import StoredClientRecord
from chat_relay.models.message import Message

logger = logging.getLogger(__name__)

MESSAGES_FILE = "messages.json"
CLIENTS_FILE = "clients.json"


class MessageStore(ABC):
    """Key-value store holding the message history and the client records."""

    @abstractmethod
    def save_messages(self, messages: List[Message]) -> None:
        ...

    @abstractmethod
    def save_clients(self, clients: Dict[str, StoredClientRecord]) -> None:
        ...

    @abstractmethod
    def load_messages(self) -> List[Message]:
        ...

    @abstractmethod
    def load_clients(self) -> Dict[str, StoredClientRecord]:
        ...


class MemoryStore(MessageStore):
    """Store that keeps the last saved state in memory."""

    def __init__(self, messages: Optional[List[Message]] = None,
                 clients: Optional[Dict[str, StoredClientRecord]] = None):
        self.messages: List[Message] = list(messages or [])
        self.clients: Dict[str, StoredClientRecord] = dict(clients or {})
        self.save_count = 0

    def save_messages(self, messages: List[Message]) -> None:
        self.messages = list(messages)
        self.save_count += 1

    def save_clients(self, clients: Dict[str, StoredClientRecord]) -> None:
        self.clients = dict(clients)
        self.save_count += 1

    def load_messages(self) -> List[Message]:
        return list(self.messages)

    def load_clients(self) -> Dict[str, StoredClientRecord]:
        return dict(self.clients)


class JsonFileStore(MessageStore):
    """
    Store writing ``messages.json`` and ``clients.json`` under a data directory.

    Files are replaced atomically so a crash mid-write leaves the previous
    version in place. A missing file loads as empty; a file that is not valid
    JSON loads as empty and is overwritten on the next save.
    """

    def __init__(self, data_dir: str):
        """
        Initialize the store.

        Args:
            data_dir: Directory for the JSON files, created on first save
        """
        self.data_dir = data_dir
        self.messages_path = os.path.join(data_dir, MESSAGES_FILE)
        self.clients_path = os.path.join(data_dir, CLIENTS_FILE)

    def save_messages(self, messages: List[Message]) -> None:
        self._write(self.messages_path, [message.to_dict() for message in messages])

    def save_clients(self, clients: Dict[str, StoredClientRecord]) -> None:
        self._write(self.clients_path, {client_id: record.to_dict() for client_id, record in clients.items()})

    def load_messages(self) -> List[Message]:
        """
        Load the persisted message history.

        Returns:
            Messages in stored order; entries that cannot be decoded are skipped

        Raises:
            PersistenceError: If the file exists but cannot be read
        """
        data = self._read(self.messages_path, default=[])
        if not isinstance(data, list):
            logger.warning(f"Ignoring {self.messages_path}: expected a JSON array")
            return []

        messages = []
        for entry in data:
            try:
                messages.append(Message.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping unreadable message entry {entry!r}: {e}")
        return messages

    def load_clients(self) -> Dict[str, StoredClientRecord]:
        """
        Load the persisted client records.

        Returns:
            Mapping of client identifier to record

        Raises:
            PersistenceError: If the file exists but cannot be read
        """
        data = self._read(self.clients_path, default={})
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {self.clients_path}: expected a JSON object")
            return {}

        clients = {}
        for client_id, entry in data.items():
            try:
                clients[client_id] = StoredClientRecord.from_dict(entry)
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping unreadable client record {client_id!r}: {e}")
        return clients

    def _read(self, path: str, default: Any) -> Any:
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse {path}: {e}")
            return default
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    def _write(self, path: str, payload: Any) -> None:
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e


class Persister:
    """
    Fire-and-forget writer in front of a MessageStore.

    Saves are snapshotted when requested and executed by a single worker
    thread, so they land in request order without holding up delivery.
    Every failure is logged and swallowed.
    """

    def __init__(self, store: MessageStore, background: bool = True):
        self.store = store
        self.background = background
        self.failures = 0
        self._failures_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        if background:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="relay-persist")

    def save_messages(self, messages: List[Message]) -> None:
        """Queue a save of the message history."""
        self._submit(self.store.save_messages, list(messages))

    def save_clients(self, clients: Dict[str, StoredClientRecord]) -> None:
        """Queue a save of the client records."""
        self._submit(self.store.save_clients, dict(clients))

    def close(self) -> None:
        """Run the remaining saves and stop the worker."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _submit(self, operation: Callable[[Any], None], payload: Any) -> None:
        if self._executor is None:
            self._run(operation, payload)
        else:
            self._executor.submit(self._run, operation, payload)

    def _run(self, operation: Callable[[Any], None], payload: Any) -> None:
        try:
            operation(payload)
        except Exception:
            with self._failures_lock:
                self.failures += 1
            logger.exception(f"Persistence failure in {operation.__name__}")
