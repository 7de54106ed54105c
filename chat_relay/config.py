"""Runtime settings for the relay, read from ``CHAT_RELAY_*`` environment variables."""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from chat_relay.core.exceptions import ConfigurationError

ENV_PREFIX = "CHAT_RELAY_"

# Number of messages replayed to newcomers.
DEFAULT_HISTORY_LIMIT = 100


class DuplicatePolicy(Enum):
    """What to do when a client identifier connects while already online.

    ALLOW: the new connection silently supersedes the old one in the registry.
    EVICT: the old connection is closed.
    REJECT: the new connection is closed.
    """
    ALLOW = "allow"
    EVICT = "evict"
    REJECT = "reject"


class StorageBackend(Enum):
    JSON = "json"
    MEMORY = "memory"


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_int(name: str, value: str, minimum: int) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
    if parsed < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {parsed}")
    return parsed


def _parse_enum(name: str, value: str, enum_type):
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise ConfigurationError(f"{name} must be one of: {choices}; got {value!r}") from None


@dataclass
class Settings:
    """Relay settings.

    Attributes:
        host: Interface the HTTP server binds to
        port: TCP port for the HTTP and WebSocket server
        data_dir: Directory holding ``messages.json`` and ``clients.json``
        storage: Persistence backend
        history_limit: Maximum number of messages kept for replay
        duplicate_policy: Handling of a second connection for an online identifier
        broadcast_welcome: Send the welcome notice to everyone instead of only the newcomer
        background_persistence: Write to the store from a worker thread
        log_level: Root logging level name
        debug: Log message contents
    """

    host: str = "0.0.0.0"
    port: int = 3000
    data_dir: str = field(default_factory=lambda: os.path.join(os.getcwd(), "data"))
    storage: StorageBackend = StorageBackend.JSON
    history_limit: int = DEFAULT_HISTORY_LIMIT
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.ALLOW
    broadcast_welcome: bool = False
    background_persistence: bool = True
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """Build settings from the environment, falling back to defaults.

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        settings = cls()

        def get(name: str) -> Optional[str]:
            return env.get(ENV_PREFIX + name)

        if get("HOST"):
            settings.host = get("HOST")
        if get("PORT") is not None:
            settings.port = _parse_int(ENV_PREFIX + "PORT", get("PORT"), 1)
        if get("DATA_DIR"):
            settings.data_dir = get("DATA_DIR")
        if get("STORAGE") is not None:
            settings.storage = _parse_enum(ENV_PREFIX + "STORAGE", get("STORAGE"), StorageBackend)
        if get("HISTORY_LIMIT") is not None:
            settings.history_limit = _parse_int(ENV_PREFIX + "HISTORY_LIMIT", get("HISTORY_LIMIT"), 1)
        if get("DUPLICATE_POLICY") is not None:
            settings.duplicate_policy = _parse_enum(
                ENV_PREFIX + "DUPLICATE_POLICY", get("DUPLICATE_POLICY"), DuplicatePolicy
            )
        if get("BROADCAST_WELCOME") is not None:
            settings.broadcast_welcome = _parse_bool(ENV_PREFIX + "BROADCAST_WELCOME", get("BROADCAST_WELCOME"))
        if get("BACKGROUND_PERSISTENCE") is not None:
            settings.background_persistence = _parse_bool(
                ENV_PREFIX + "BACKGROUND_PERSISTENCE", get("BACKGROUND_PERSISTENCE")
            )
        if get("LOG_LEVEL"):
            settings.log_level = get("LOG_LEVEL").upper()
        if get("DEBUG") is not None:
            settings.debug = _parse_bool(ENV_PREFIX + "DEBUG", get("DEBUG"))
        return settings
