"""In-memory stand-ins for the stores and the realtime gateway"""
import copy
from datetime import timedelta
from typing import List, Optional

from app.domains.rooms.entities import RoomStatus
from app.shared.utils.time import utcnow


class InMemoryRoomRepository:
    def __init__(self):
        self.rooms = {}
        self.saves = 0

    async def get(self, room_id):
        room = self.rooms.get(room_id)
        return copy.deepcopy(room) if room else None

    async def save(self, room):
        room.version += 1
        self.rooms[room.room_id] = copy.deepcopy(room)
        self.saves += 1
        return room

    async def delete(self, room_id):
        return self.rooms.pop(room_id, None) is not None

    def _active(self):
        rooms = [
            r for r in self.rooms.values()
            if r.status == RoomStatus.ACTIVE and not r.settings.is_private
        ]
        return sorted(rooms, key=lambda r: r.last_active_at, reverse=True)

    async def list_active(self, offset=0, limit=20):
        return [copy.deepcopy(r) for r in self._active()[offset:offset + limit]]

    async def count_active(self):
        return len(self._active())

    async def end_inactive_rooms(self, hours):
        cutoff = utcnow() - timedelta(hours=hours)
        ended = []
        for room in self.rooms.values():
            if room.status == RoomStatus.ACTIVE and room.last_active_at < cutoff:
                room.status = RoomStatus.ENDED
                room.version += 1
                ended.append(room.room_id)
        return ended


class InMemoryMediaRepository:
    def __init__(self):
        self.items = {}
        self.fail_saves = 0

    async def get(self, content_id):
        content = self.items.get(content_id)
        return copy.deepcopy(content) if content else None

    async def save(self, content):
        if self.fail_saves:
            self.fail_saves -= 1
            raise OSError("store unavailable")
        self.items[content.content_id] = copy.deepcopy(content)
        return content

    async def delete(self, content_id):
        return self.items.pop(content_id, None) is not None

    async def delete_by_room(self, room_id):
        doomed = [cid for cid, c in self.items.items() if c.room_id == room_id]
        for cid in doomed:
            del self.items[cid]
        return len(doomed)

    async def list_by_room(self, room_id, offset=0, limit=None, statuses=None):
        items = [c for c in self.items.values() if c.room_id == room_id]
        if statuses is not None:
            items = [c for c in items if c.status in tuple(statuses)]
        items.sort(key=lambda c: c.added_at, reverse=True)
        end = None if limit is None else offset + limit
        return [copy.deepcopy(c) for c in items[offset:end]]

    async def count_by_room(self, room_id):
        return sum(1 for c in self.items.values() if c.room_id == room_id)


class RecordingGateway:
    """Stands in for WebSocketManager: records what would be fanned out"""

    def __init__(self):
        self.messages: List[tuple] = []
        self.direct: List[tuple] = []
        self.evicted: List[tuple] = []
        self.closed: List[str] = []
        self.roles = {}
        self.members = {}
        self.joined: List[tuple] = []
        self.left: List = []
        self.present = set()

    async def broadcast(self, room_id, message, exclude=None, exclude_users=None):
        self.messages.append((room_id, message))
        return 1

    def room_members(self, room_id):
        return list(self.members.get(room_id, []))

    async def evict_user(self, room_id, user_id, message=None):
        self.evicted.append((room_id, user_id))

    async def close_room(self, room_id, message=None):
        if message:
            self.messages.append((room_id, message))
        self.closed.append(room_id)

    def update_role(self, room_id, user_id, role):
        self.roles[(room_id, user_id)] = role

    async def send(self, websocket, message):
        self.direct.append((websocket, message))
        return True

    async def join_room(self, websocket, room_id, role, snapshot, delta):
        self.joined.append((websocket, room_id, role, snapshot, delta))

    async def leave_room(self, websocket, delta=None):
        self.left.append(websocket)

    def is_user_in_room(self, room_id, user_id):
        return (room_id, user_id) in self.present

    def events(self, name: str, room_id: Optional[str] = None) -> List[dict]:
        return [
            m for r, m in self.messages
            if m.get("event") == name and (room_id is None or r == room_id)
        ]

    def names(self) -> List[str]:
        return [m.get("event") for _, m in self.messages]

    def clear(self):
        self.messages.clear()
        self.direct.clear()
