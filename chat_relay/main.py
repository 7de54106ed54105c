"""FastAPI application exposing the chat relay over WebSocket."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from chat_relay.config import Settings, StorageBackend
from chat_relay.core.identity import resolve_client_id
from chat_relay.core.router import decode_frame
from chat_relay.core.storage import JsonFileStore, MemoryStore, MessageStore, Persister
from chat_relay.core.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_store(settings: Settings) -> MessageStore:
    if settings.storage == StorageBackend.MEMORY:
        return MemoryStore()
    return JsonFileStore(settings.data_dir)


def create_app(settings: Optional[Settings] = None, store: Optional[MessageStore] = None) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Relay settings, read from the environment when omitted
        store: Persistence backend, chosen from ``settings.storage`` when omitted
    """
    settings = settings or Settings.from_env()
    store = store or build_store(settings)
    persister = Persister(store, background=settings.background_persistence)
    websocket_manager = WebSocketManager(
        persister,
        history_limit=settings.history_limit,
        duplicate_policy=settings.duplicate_policy,
        broadcast_welcome=settings.broadcast_welcome,
        debug=settings.debug
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        websocket_manager.load()
        logger.info(f"Chat relay ready, storage: {settings.storage.value}")
        try:
            yield
        finally:
            await websocket_manager.close()

    app = FastAPI(title="Chat Relay", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.websocket_manager = websocket_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware)

    @app.get("/")
    async def root():
        """Root endpoint returning service information."""
        return {
            "message": "Chat Relay",
            "version": VERSION,
            "endpoints": {
                "websocket": "/ws",
                "history": "/history",
                "clients": "/clients"
            }
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "connected_clients": len(websocket_manager.registry),
            "history_size": len(websocket_manager.history)
        }

    @app.get("/history")
    async def get_history():
        """Stored message history, oldest first."""
        return [message.to_dict() for message in websocket_manager.history.snapshot_all()]

    @app.get("/clients")
    async def get_clients():
        """Every stored client record and the identifiers currently online."""
        return {
            "clients": [record.to_dict() for record in websocket_manager.clients.values()],
            "online": websocket_manager.online_clients()
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for chat clients.

        A returning client presents its identifier in the ``userId`` cookie
        or query parameter.
        """
        session = await websocket_manager.connect(websocket, resolve_client_id(websocket))
        if session is None:
            return

        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
                await websocket_manager.handle_message(session, decode_frame(frame))

        except WebSocketDisconnect:
            logger.info(f"Client {session.client_id} connection closed")
        except Exception as e:
            logger.error(f"WebSocket error for client {session.client_id}: {str(e)}")
        finally:
            await websocket_manager.disconnect(session)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = app.state.settings
    logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
