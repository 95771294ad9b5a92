# app/domains/rooms/repository.py
"""
Room persistence: one row per room, the aggregate stored as a JSON document.
"""
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy import func, select

from app.core.database import session_scope
from app.shared.utils.logger import get_logger
from app.shared.utils.time import utcnow

from .entities import Room, RoomStatus
from .models import RoomRecord

logger = get_logger(__name__)


class RoomRepository:
    def __init__(self, session_factory: Callable = session_scope):
        self._session = session_factory

    async def get(self, room_id: str) -> Optional[Room]:
        async with self._session() as db:
            record = await db.get(RoomRecord, room_id)
            if record is None:
                return None
            return _to_entity(record)

    async def save(self, room: Room) -> Room:
        """Upsert; bumps the room version"""
        room.version += 1
        document = room.to_document()
        async with self._session() as db:
            record = await db.get(RoomRecord, room.room_id)
            if record is None:
                record = RoomRecord(id=room.room_id)
                db.add(record)
            record.owner_id = room.owner_id
            record.title = room.title
            record.description = room.description
            record.category = room.category
            record.is_private = room.settings.is_private
            record.status = room.status.value
            record.total_mics = room.total_mics
            record.state = document
            record.last_active_at = room.last_active_at
            record.version = room.version
        return room

    async def delete(self, room_id: str) -> bool:
        async with self._session() as db:
            record = await db.get(RoomRecord, room_id)
            if record is None:
                return False
            await db.delete(record)
            return True

    async def list_active(self, offset: int = 0, limit: int = 20) -> List[Room]:
        async with self._session() as db:
            result = await db.execute(
                select(RoomRecord)
                .where(RoomRecord.status == RoomStatus.ACTIVE.value)
                .where(RoomRecord.is_private.is_(False))
                .order_by(RoomRecord.last_active_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return [_to_entity(r) for r in result.scalars().all()]

    async def count_active(self) -> int:
        async with self._session() as db:
            result = await db.execute(
                select(func.count(RoomRecord.id))
                .where(RoomRecord.status == RoomStatus.ACTIVE.value)
                .where(RoomRecord.is_private.is_(False))
            )
            return int(result.scalar() or 0)

    async def end_inactive_rooms(self, hours: int) -> List[str]:
        """Mark rooms idle for longer than ``hours`` as ended, return their ids"""
        cutoff = utcnow() - timedelta(hours=hours)
        async with self._session() as db:
            result = await db.execute(
                select(RoomRecord).where(
                    RoomRecord.status == RoomStatus.ACTIVE.value,
                    RoomRecord.last_active_at < cutoff,
                )
            )
            records = result.scalars().all()
            ids = []
            for record in records:
                state = dict(record.state or {})
                state["status"] = RoomStatus.ENDED.value
                record.state = state
                record.status = RoomStatus.ENDED.value
                record.version += 1
                ids.append(record.id)
        if ids:
            logger.info(f"Ended {len(ids)} inactive rooms")
        return ids


def _to_entity(record: RoomRecord) -> Room:
    document = dict(record.state or {})
    document.setdefault("room_id", record.id)
    document.setdefault("owner_id", record.owner_id)
    document.setdefault("title", record.title)
    document.setdefault("total_mics", record.total_mics)
    document["status"] = record.status
    document["version"] = record.version
    return Room.from_document(document)
