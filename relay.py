from typing import Any

from pydantic import ValidationError

from errors import InvalidPayload, NotAParticipant
from registry import RoomRegistry
from schemas.signaling import AnswerPayload, IcePayload, OfferPayload
from transport import ConnectionManager
from logging_config import get_logger

logger = get_logger(__name__)

# event name -> (payload model, error reported when it does not validate)
NEGOTIATION_EVENTS = {
    "offer": (OfferPayload, "Invalid offer data"),
    "answer": (AnswerPayload, "Invalid answer data"),
    "ice": (IcePayload, "Invalid ICE candidate data"),
}

RECORDING_NOTICES = {
    "recording_started": "Recording has started",
    "recording_stopped": "Recording has stopped",
}


class Relay:
    """Forwards negotiation payloads between the participants of a room."""

    def __init__(self, registry: RoomRegistry, transport: ConnectionManager):
        self.registry = registry
        self.transport = transport

    async def forward(self, kind: str, sender_id: str, data: Any) -> int:
        model, error = NEGOTIATION_EVENTS[kind]
        try:
            payload = model.model_validate(data)
        except ValidationError:
            raise InvalidPayload(error)

        if not await self.registry.is_participant(payload.room, sender_id):
            raise NotAParticipant()

        logger.info(f"Forwarding {kind} in room: {payload.room}")
        # verbatim, under the same event name
        return await self.transport.emit_to_group(payload.room, kind, data, exclude=sender_id)

    async def notify_recording(self, kind: str, sender_id: str, code: Any) -> int:
        notice = RECORDING_NOTICES[kind]
        if not await self.registry.is_participant(code, sender_id):
            raise NotAParticipant()

        logger.info(f"{notice} in room: {code}")
        return await self.transport.emit_to_group(code, "recording_notification", notice, exclude=sender_id)
