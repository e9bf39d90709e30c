from datetime import datetime, timezone
from typing import Iterable, List

from constants import CALL_HISTORY_LIMIT
from schemas.signaling import CallRecord, Room
from logging_config import get_logger

logger = get_logger(__name__)


def _aware(value: datetime) -> datetime:
    # Timestamps from older stores may lack a zone; they were written in UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def call_duration(start: datetime, end: datetime) -> float:
    """Seconds between two instants, with sub-second precision."""
    return (_aware(end) - _aware(start)).total_seconds()


def finalize_call(room: Room, participants: Iterable[str], ended_at: datetime) -> CallRecord:
    """Build the call record for a connected room that has just emptied.

    `participants` is the membership at the moment the room emptied, the
    departing client included. The caller is responsible for appending the
    record and removing the room in the same critical section.
    """
    if room.connected_at is None:
        raise ValueError(f"Room {room.code} was never connected")

    record = CallRecord(
        room=room.code,
        start_time=room.connected_at,
        end_time=ended_at,
        duration=call_duration(room.connected_at, ended_at),
        participants=tuple(participants),
    )
    logger.info(f"Call finalized in room {room.code}: duration={record.duration:.3f}s participants={list(record.participants)}")
    return record


def recent_calls(records: List[CallRecord], limit: int = CALL_HISTORY_LIMIT) -> List[CallRecord]:
    """The last `limit` records, most recent first."""
    if limit <= 0:
        return []
    return list(reversed(records[-limit:]))
