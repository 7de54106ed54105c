"""Client identifier resolution for incoming connections."""

import uuid
from typing import Optional

from fastapi import WebSocket

USER_ID_KEY = "userId"


def mint_client_id() -> str:
    """Generate a fresh client identifier."""
    return str(uuid.uuid4())


def resolve_client_id(websocket: WebSocket) -> Optional[str]:
    """
    Read the identifier a returning client presents.

    The ``userId`` cookie wins over the ``userId`` query parameter.

    Returns:
        The presented identifier, or None for a new client
    """
    for source in (websocket.cookies, websocket.query_params):
        value = source.get(USER_ID_KEY)
        if value and value.strip():
            return value.strip()
    return None
