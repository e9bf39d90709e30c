from datetime import datetime
from typing import Annotated, Any, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # Stored and sent as camelCase (createdAt, connectedAt, ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Room(CamelModel):
    code: str
    participants: list[str] = Field(default_factory=list)
    creator: str
    created_at: datetime
    connected_at: Optional[datetime] = None
    # held two participants since it was last empty
    paired: bool = False


class OfflineMessage(CamelModel):
    sender: str = Field(alias="from")
    message: Any
    timestamp: datetime


class CallRecord(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    room: str
    start_time: datetime
    end_time: datetime
    duration: float
    participants: tuple[str, ...] = ()


class Stats(CamelModel):
    total_connections: int = 0
    total_calls: int = 0
    failed_calls: int = 0


class State(CamelModel):
    """Everything the store persists; loaded once at startup."""

    rooms: dict[str, Room] = Field(default_factory=dict)
    offline_messages: dict[str, list[OfflineMessage]] = Field(default_factory=dict)
    call_records: list[CallRecord] = Field(default_factory=list)
    stats: Stats = Field(default_factory=Stats)

    @field_validator("rooms", mode="before")
    @classmethod
    def fill_room_codes(cls, value):
        # db.json files written before rooms carried their own code
        if isinstance(value, dict):
            return {
                code: ({"code": code, **room} if isinstance(room, dict) and "code" not in room else room)
                for code, room in value.items()
            }
        return value


class ClientEvent(BaseModel):
    """A frame sent by a client over the websocket."""

    event: str
    data: Any = None
    # echoed back in the ack frame
    id: Optional[Union[int, str]] = None


def _require_value(value):
    if value is None or value == "":
        raise ValueError("value is required")
    return value


RequiredValue = Annotated[Any, AfterValidator(_require_value)]


class RoomPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    room: str = Field(min_length=1)


class OfferPayload(RoomPayload):
    offer: RequiredValue


class AnswerPayload(RoomPayload):
    answer: RequiredValue


class IcePayload(RoomPayload):
    candidate: RequiredValue


class LeaveMessagePayload(RoomPayload):
    message: RequiredValue
