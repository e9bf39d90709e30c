import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from constants import MIN_ROOM_CODE_LENGTH, ROOM_CAPACITY, CALL_HISTORY_LIMIT
from accounting import finalize_call, recent_calls
from errors import InvalidCode, RoomExists, RoomNotFound, RoomFull
from schemas.signaling import CallRecord, OfflineMessage, Room, State, Stats
from store import StateWriter
from logging_config import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JoinResult:
    room: Room
    pending_messages: List[OfflineMessage] = field(default_factory=list)
    # first participant, set only when this join filled the room
    peer_joined: Optional[str] = None


@dataclass
class LeaveResult:
    code: str
    removed: bool
    empty: bool
    remaining: List[str] = field(default_factory=list)
    record: Optional[CallRecord] = None


class RoomRegistry:
    """In-memory owner of rooms, offline messages, call records and stats.

    Every operation runs under one asyncio lock, so operations on the same
    room code are linearizable. The store is written after the lock is
    released, from a snapshot taken while it was held.
    """

    def __init__(self, state: Optional[State] = None, writer: Optional[StateWriter] = None,
                 clock: Callable[[], datetime] = utcnow):
        self._state = state or State()
        self._writer = writer
        self._clock = clock
        self._lock = asyncio.Lock()
        self._version = 0
        # connection id -> room codes (dict used as an ordered set)
        self._memberships: Dict[str, Dict[str, None]] = {}
        for room in self._state.rooms.values():
            for participant in room.participants:
                self._memberships.setdefault(participant, {})[room.code] = None

    @classmethod
    def from_state(cls, state: State, **kwargs) -> "RoomRegistry":
        """Restore a registry from a loaded store.

        Connection ids only live as long as their connection, so participants
        recorded by a previous process are dropped. A room whose call was
        connected is left with nobody in it: its call is finalized at restore
        time and the room removed.
        """
        clock = kwargs.get("clock", utcnow)
        for code, room in list(state.rooms.items()):
            stale = list(room.participants)
            if stale:
                logger.info(f"Clearing {len(stale)} stale participants from restored room {code}")
            room.participants = []
            room.paired = False
            if room.connected_at is None:
                continue
            state.call_records.append(finalize_call(room, stale, clock()))
            del state.rooms[code]
            state.offline_messages.pop(code, None)
            logger.info(f"Restored room {code} had a connected call, finalized and removed")
        logger.info(f"Registry restored with {len(state.rooms)} rooms and {len(state.call_records)} call records")
        return cls(state, **kwargs)

    # persistence

    def _bump(self) -> Tuple[State, int]:
        self._version += 1
        # call records and offline messages are never mutated once stored
        snapshot = State.model_construct(
            rooms={code: room.model_copy(deep=True) for code, room in self._state.rooms.items()},
            offline_messages={code: list(queue) for code, queue in self._state.offline_messages.items()},
            call_records=list(self._state.call_records),
            stats=self._state.stats.model_copy(),
        )
        return snapshot, self._version

    async def _persist(self, pending: Optional[Tuple[State, int]]):
        if pending is None or self._writer is None:
            return
        state, version = pending
        await self._writer.save(state, version)

    async def flush(self):
        async with self._lock:
            pending = self._bump()
        await self._persist(pending)

    # helpers, callers hold the lock

    @staticmethod
    def _check_code(code: Any, min_length: int = 1):
        if not isinstance(code, str) or len(code) < min_length:
            raise InvalidCode()

    def _forget_membership(self, client_id: str, code: str):
        rooms = self._memberships.get(client_id)
        if rooms is None:
            return
        rooms.pop(code, None)
        if not rooms:
            del self._memberships[client_id]

    def _remove_participant(self, code: str, client_id: str) -> LeaveResult:
        self._forget_membership(client_id, code)
        room = self._state.rooms.get(code)
        if room is None or client_id not in room.participants:
            return LeaveResult(code=code, removed=False, empty=room is not None and not room.participants,
                               remaining=list(room.participants) if room else [])

        departing = list(room.participants)
        room.participants.remove(client_id)
        logger.debug(f"Removed {client_id} from room {code} ({len(room.participants)} left)")

        record = None
        if not room.participants:
            if room.connected_at is not None:
                record = finalize_call(room, departing, self._clock())
                # record and removal become visible together
                self._state.call_records.append(record)
                del self._state.rooms[code]
                dropped = self._state.offline_messages.pop(code, None)
                if dropped:
                    logger.info(f"Dropped {len(dropped)} undelivered offline messages of finalized room {code}")
                logger.info(f"Room {code} removed after call finalization")
            elif room.paired:
                room.paired = False
                self._state.stats.failed_calls += 1
                logger.info(f"Room {code} emptied without connecting, counted as failed call")

        return LeaveResult(code=code, removed=True, empty=not room.participants,
                           remaining=list(room.participants), record=record)

    # room operations

    async def create_room(self, code: str, creator_id: str) -> Room:
        self._check_code(code, MIN_ROOM_CODE_LENGTH)
        async with self._lock:
            if code in self._state.rooms:
                raise RoomExists()
            room = Room(code=code, participants=[creator_id], creator=creator_id, created_at=self._clock())
            self._state.rooms[code] = room
            self._memberships.setdefault(creator_id, {})[code] = None
            snapshot = room.model_copy(deep=True)
            pending = self._bump()
        logger.info(f"Room {code} created by {creator_id}")
        await self._persist(pending)
        return snapshot

    async def join_room(self, code: str, client_id: str) -> JoinResult:
        self._check_code(code)
        async with self._lock:
            room = self._state.rooms.get(code)
            if room is None:
                raise RoomNotFound()

            peer_joined = None
            if client_id in room.participants:
                logger.debug(f"{client_id} is already in room {code}")
            else:
                if len(room.participants) >= ROOM_CAPACITY:
                    raise RoomFull()
                room.participants.append(client_id)
                self._memberships.setdefault(client_id, {})[code] = None
                if len(room.participants) == ROOM_CAPACITY:
                    room.paired = True
                    peer_joined = room.participants[0]
                    self._state.stats.total_calls += 1

            messages = self._state.offline_messages.pop(code, [])
            snapshot = room.model_copy(deep=True)
            pending = self._bump()
        logger.info(f"{client_id} joined room {code} ({len(snapshot.participants)}/{ROOM_CAPACITY})")
        await self._persist(pending)
        return JoinResult(room=snapshot, pending_messages=messages, peer_joined=peer_joined)

    async def leave_room(self, code: str, client_id: str) -> LeaveResult:
        async with self._lock:
            if not isinstance(code, str):
                return LeaveResult(code=str(code), removed=False, empty=False)
            result = self._remove_participant(code, client_id)
            pending = self._bump() if result.removed else None
        await self._persist(pending)
        return result

    async def leave_all(self, client_id: str) -> List[LeaveResult]:
        """Remove a client from every room it is in (used on disconnect)."""
        async with self._lock:
            codes = list(self._memberships.get(client_id, {}))
            results = [self._remove_participant(code, client_id) for code in codes]
            pending = self._bump() if any(r.removed for r in results) else None
        await self._persist(pending)
        return results

    async def is_participant(self, code: str, client_id: str) -> bool:
        if not isinstance(code, str):
            return False
        async with self._lock:
            room = self._state.rooms.get(code)
            return room is not None and client_id in room.participants

    async def mark_connected(self, code: str) -> Room:
        """Mark the call in a room as live. The first call wins."""
        async with self._lock:
            room = self._state.rooms.get(code) if isinstance(code, str) else None
            if room is None:
                raise RoomNotFound("Room not found")
            if room.connected_at is not None:
                logger.debug(f"Room {code} already connected at {room.connected_at.isoformat()}")
                return room.model_copy(deep=True)
            room.connected_at = self._clock()
            snapshot = room.model_copy(deep=True)
            pending = self._bump()
        logger.info(f"Call connected in room {code}")
        await self._persist(pending)
        return snapshot

    async def leave_message(self, code: str, sender_id: str, message: Any) -> OfflineMessage:
        async with self._lock:
            if code not in self._state.rooms:
                raise RoomNotFound()
            entry = OfflineMessage(sender=sender_id, message=message, timestamp=self._clock())
            self._state.offline_messages.setdefault(code, []).append(entry)
            count = len(self._state.offline_messages[code])
            pending = self._bump()
        logger.info(f"Offline message from {sender_id} queued for room {code} ({count} pending)")
        await self._persist(pending)
        return entry

    async def record_connection(self) -> int:
        async with self._lock:
            self._state.stats.total_connections += 1
            total = self._state.stats.total_connections
            pending = self._bump()
        await self._persist(pending)
        return total

    # reads

    async def get_room(self, code: str) -> Optional[Room]:
        async with self._lock:
            room = self._state.rooms.get(code)
            return room.model_copy(deep=True) if room else None

    async def rooms_of(self, client_id: str) -> List[str]:
        async with self._lock:
            return list(self._memberships.get(client_id, {}))

    async def pending_messages(self, code: str) -> List[OfflineMessage]:
        """Queued messages for a room, without consuming them."""
        async with self._lock:
            return [m.model_copy() for m in self._state.offline_messages.get(code, [])]

    async def call_history(self, limit: int = CALL_HISTORY_LIMIT) -> List[CallRecord]:
        async with self._lock:
            return recent_calls(self._state.call_records, limit)

    async def stats(self) -> Stats:
        async with self._lock:
            return self._state.stats.model_copy()
