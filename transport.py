import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional, Union

from fastapi import WebSocket

from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Tracks websocket connections and the broadcast groups they belong to.

    Frames pushed to clients are JSON objects `{"event": ..., "data": ...}`;
    acknowledgments are `{"event": "ack", "id": ..., "data": {...}}`.
    """

    def __init__(self):
        # Format: {connection_id: websocket}
        self.connections: Dict[str, WebSocket] = {}
        # Format: {group: {connection_id: websocket}}
        self.groups: Dict[str, Dict[str, WebSocket]] = {}

    def connect(self, websocket: WebSocket) -> str:
        connection_id = str(uuid.uuid4())
        self.connections[connection_id] = websocket
        logger.debug(f"Registered connection {connection_id} ({len(self.connections)} open)")
        return connection_id

    def disconnect(self, connection_id: str) -> List[str]:
        """Forget a connection; returns the groups it was removed from."""
        self.connections.pop(connection_id, None)
        left = [group for group, members in self.groups.items() if connection_id in members]
        for group in left:
            self.leave_group(connection_id, group)
        logger.debug(f"Unregistered connection {connection_id} (groups: {left})")
        return left

    def join_group(self, connection_id: str, group: str):
        websocket = self.connections.get(connection_id)
        if websocket is None:
            logger.warning(f"Cannot add unknown connection {connection_id} to group {group}")
            return
        self.groups.setdefault(group, {})[connection_id] = websocket
        logger.debug(f"Connection {connection_id} joined group {group} ({len(self.groups[group])} members)")

    def leave_group(self, connection_id: str, group: str):
        members = self.groups.get(group)
        if not members:
            return
        members.pop(connection_id, None)
        if not members:
            del self.groups[group]

    async def _send_frame(self, connection_id: str, websocket: WebSocket, frame: dict) -> bool:
        try:
            await websocket.send_text(json.dumps(frame))
            return True
        except Exception as e:
            # Connection might be closing; its own handler will clean up
            logger.warning(f"Error sending {frame.get('event')} to connection {connection_id}: {e}")
            return False

    async def send(self, connection_id: str, event: str, data: Any = None) -> bool:
        websocket = self.connections.get(connection_id)
        if websocket is None:
            logger.debug(f"Dropping {event} for unknown connection {connection_id}")
            return False
        return await self._send_frame(connection_id, websocket, {"event": event, "data": data})

    async def ack(self, connection_id: str, ack_id: Union[int, str], payload: dict) -> bool:
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return False
        return await self._send_frame(connection_id, websocket, {"event": "ack", "id": ack_id, "data": payload})

    async def emit_to_group(self, group: str, event: str, data: Any = None, exclude: Optional[str] = None) -> int:
        """Send an event to every member of a group; returns how many were sent."""
        targets = [(cid, ws) for cid, ws in self.groups.get(group, {}).items() if cid != exclude]
        if not targets:
            logger.debug(f"No recipients for {event} in group {group}")
            return 0
        frame = {"event": event, "data": data}
        results = await asyncio.gather(*(self._send_frame(cid, ws, frame) for cid, ws in targets))
        sent = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast {event} to {sent}/{len(targets)} connections in group {group}")
        return sent
