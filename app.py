from contextlib import asynccontextmanager
from typing import Callable, Optional
from datetime import datetime
import os

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from backend import StoreBackend, create_backend
from constants import CORS_ORIGINS
from coordinator import SessionCoordinator
from registry import RoomRegistry, utcnow
from relay import Relay
from routers.history import history_router
from schemas.signaling import ClientEvent
from store import StateWriter
from transport import ConnectionManager
from logging_config import get_logger, setup_logging

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


async def websocket_endpoint(websocket: WebSocket):
    """Signaling socket: one SessionCoordinator per connection.

    Client frames are text `{"event": name, "data": payload, "id": optional int or str}`;
    frames carrying an id are answered with an `ack` frame.
    """
    state = websocket.app.state
    registry: RoomRegistry = state.registry
    transport: ConnectionManager = state.transport

    await websocket.accept()
    connection_id = transport.connect(websocket)
    session = SessionCoordinator(connection_id, registry, transport, state.relay)
    total = await registry.record_connection()
    logger.info(f"New connection: {connection_id} (total connections: {total})")

    reason = "server shutting down"
    try:
        await transport.send(connection_id, "connected", {"id": connection_id})
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.warning(f"Non-text frame from {connection_id}")
                await transport.send(connection_id, "error", "Invalid event frame")
                continue
            try:
                event = ClientEvent.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Malformed frame from {connection_id}: {e.error_count()} errors")
                await transport.send(connection_id, "error", "Invalid event frame")
                continue

            ack = await session.handle(event)
            if event.id is not None:
                await transport.ack(connection_id, event.id, ack)
    except WebSocketDisconnect as e:
        reason = f"client disconnect (code {e.code})"
    except Exception as e:
        logger.error(f"Socket error ({connection_id}): {e}", exc_info=True)
        reason = "transport error"
    finally:
        await session.disconnect(reason)


def create_app(backend: Optional[StoreBackend] = None, clock: Callable[[], datetime] = utcnow) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store_backend = backend or create_backend()
        state = store_backend.load()
        registry = RoomRegistry.from_state(state, writer=StateWriter(store_backend), clock=clock)
        transport = ConnectionManager()
        app.state.backend = store_backend
        app.state.registry = registry
        app.state.transport = transport
        app.state.relay = Relay(registry, transport)
        logger.info(f"Signaling server ready ({store_backend.name} store)")
        yield
        logger.info("Saving database before shutdown...")
        await registry.flush()
        store_backend.close()

    app = FastAPI(title="Call Signaling Server", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(history_router)
    app.add_api_websocket_route("/ws", websocket_endpoint)
    return app


app = create_app()
