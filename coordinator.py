from functools import partial
from typing import Any, Optional

from pydantic import ValidationError

from errors import InvalidCode, InvalidPayload, SignalingError
from registry import LeaveResult, RoomRegistry
from relay import NEGOTIATION_EVENTS, RECORDING_NOTICES, Relay
from schemas.signaling import ClientEvent, LeaveMessagePayload
from transport import ConnectionManager
from logging_config import get_logger

logger = get_logger(__name__)


class SessionCoordinator:
    """Handles the events of one connected client for the lifetime of its connection.

    Every handler either returns extra acknowledgment fields or raises a
    SignalingError; `handle` turns both into a `{"success": ...}` payload so a
    failing event never ends the connection.
    """

    def __init__(self, connection_id: str, registry: RoomRegistry, transport: ConnectionManager,
                 relay: Optional[Relay] = None):
        self.connection_id = connection_id
        self.registry = registry
        self.transport = transport
        self.relay = relay or Relay(registry, transport)
        self.handlers = {
            "create": self.create,
            "join": self.join,
            "leave": self.leave,
            "leave_message": self.leave_message,
            "call_connected": self.call_connected,
        }
        for kind in NEGOTIATION_EVENTS:
            self.handlers[kind] = partial(self.relay.forward, kind, connection_id)
        for kind in RECORDING_NOTICES:
            self.handlers[kind] = partial(self.relay.notify_recording, kind, connection_id)

    async def handle(self, event: ClientEvent) -> dict:
        handler = self.handlers.get(event.event)
        if handler is None:
            logger.warning(f"Unknown event {event.event!r} from {self.connection_id}")
            return {"success": False, "error": "Unknown event"}
        try:
            result = await handler(event.data)
        except SignalingError as e:
            logger.error(f"Error handling {event.event} from {self.connection_id}: {e}")
            return {"success": False, "error": e.message}
        except Exception as e:
            logger.error(f"Unexpected error handling {event.event} from {self.connection_id}: {e}", exc_info=True)
            return {"success": False, "error": "Internal server error"}
        ack = {"success": True}
        if isinstance(result, dict):
            ack.update(result)
        return ack

    async def create(self, code: Any) -> dict:
        logger.info(f"Creating room: {code}")
        await self.registry.create_room(code, self.connection_id)
        self.transport.join_group(self.connection_id, code)
        return {"room": code}

    async def join(self, code: Any) -> dict:
        logger.info(f"{self.connection_id} attempting to join room: {code}")
        try:
            result = await self.registry.join_room(code, self.connection_id)
        except SignalingError as e:
            await self.transport.send(self.connection_id, "error", e.message)
            raise

        self.transport.join_group(self.connection_id, code)
        if result.pending_messages:
            logger.info(f"Delivering {len(result.pending_messages)} offline messages in room {code} to {self.connection_id}")
            await self.transport.send(
                self.connection_id,
                "pending_messages",
                [m.model_dump(mode="json", by_alias=True) for m in result.pending_messages],
            )
        await self.transport.emit_to_group(code, "joined", code)
        if result.peer_joined:
            await self.transport.send(result.peer_joined, "peer_joined")
        return {"room": code}

    async def leave(self, code: Any) -> None:
        if not isinstance(code, str):
            raise InvalidCode()
        logger.info(f"{self.connection_id} leaving room: {code}")
        self.transport.leave_group(self.connection_id, code)
        await self.registry.leave_room(code, self.connection_id)
        await self.transport.emit_to_group(code, "leave")

    async def leave_message(self, data: Any) -> None:
        try:
            payload = LeaveMessagePayload.model_validate(data)
        except ValidationError:
            raise InvalidPayload("Invalid message data")
        await self.registry.leave_message(payload.room, self.connection_id, payload.message)
        await self.transport.emit_to_group(
            payload.room,
            "offline_message",
            {"from": self.connection_id, "message": payload.message},
            exclude=self.connection_id,
        )

    async def call_connected(self, code: Any) -> None:
        await self.registry.mark_connected(code)

    async def _announce_departure(self, result: LeaveResult):
        if result.removed:
            await self.transport.emit_to_group(result.code, "leave")

    async def disconnect(self, reason: str = "") -> list:
        """Transport-triggered cleanup: leave every room this client is in."""
        logger.info(f"Disconnected: {self.connection_id} (Reason: {reason})")
        self.transport.disconnect(self.connection_id)
        results = await self.registry.leave_all(self.connection_id)
        for result in results:
            await self._announce_departure(result)
        return results
