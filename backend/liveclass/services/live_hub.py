"""Room registry for live WebSocket connections."""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

MEETING_ROOM_PREFIX = "meeting-"
USER_ROOM_PREFIX = "user-"


def meeting_room(meeting_id: int) -> str:
    return f"{MEETING_ROOM_PREFIX}{meeting_id}"


def user_room(user_id: int) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


def meeting_id_from_room(room: str) -> Optional[int]:
    if not room.startswith(MEETING_ROOM_PREFIX):
        return None
    try:
        return int(room[len(MEETING_ROOM_PREFIX):])
    except ValueError:
        return None


class LiveConnection:
    """One client socket plus the rooms it belongs to."""

    def __init__(self, websocket: Any, user_id: Optional[int] = None):
        self.websocket = websocket
        self.connection_id = uuid.uuid4().hex
        self.user_id = user_id
        self.rooms: set = set()

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        await self.websocket.send_json(jsonable_encoder({"event": event, "data": data}))


class LiveHub:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._rooms: Dict[str, List[LiveConnection]] = {}

    async def join(self, room: str, connection: LiveConnection) -> None:
        async with self._lock:
            members = self._rooms.setdefault(room, [])
            if connection not in members:
                members.append(connection)
            connection.rooms.add(room)

    async def leave(self, room: str, connection: LiveConnection) -> None:
        async with self._lock:
            self._remove(room, connection)

    async def discard(self, connection: LiveConnection) -> None:
        async with self._lock:
            for room in list(connection.rooms):
                self._remove(room, connection)

    def _remove(self, room: str, connection: LiveConnection) -> None:
        members = [member for member in self._rooms.get(room, []) if member is not connection]
        if members:
            self._rooms[room] = members
        else:
            self._rooms.pop(room, None)
        connection.rooms.discard(room)

    async def members(self, room: str) -> List[LiveConnection]:
        async with self._lock:
            return list(self._rooms.get(room, []))

    async def rooms(self, prefix: str = "") -> List[str]:
        async with self._lock:
            return [room for room in self._rooms if room.startswith(prefix)]

    async def send(self, connection: LiveConnection, event: str, data: Dict[str, Any]) -> bool:
        try:
            await connection.send(event, data)
        except Exception:
            logger.debug("Dropping connection %s after failed send", connection.connection_id)
            await self.discard(connection)
            return False
        return True

    async def broadcast(self, room: str, event: str, data: Dict[str, Any]) -> int:
        delivered = 0
        for member in await self.members(room):
            if await self.send(member, event, data):
                delivered += 1
        return delivered
