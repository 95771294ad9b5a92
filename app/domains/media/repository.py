# app/domains/media/repository.py
from typing import Callable, Iterable, List, Optional

from sqlalchemy import delete, func, select

from app.core.database import session_scope

from .entities import ContentStatus, MediaContent
from .models import MediaContentRecord


class MediaRepository:
    def __init__(self, session_factory: Callable = session_scope):
        self._session = session_factory

    async def get(self, content_id: str) -> Optional[MediaContent]:
        async with self._session() as db:
            record = await db.get(MediaContentRecord, content_id)
            return _to_entity(record) if record else None

    async def save(self, content: MediaContent) -> MediaContent:
        document = content.to_document()
        async with self._session() as db:
            record = await db.get(MediaContentRecord, content.content_id)
            if record is None:
                record = MediaContentRecord(id=content.content_id)
                db.add(record)
            record.room_id = content.room_id
            record.type = document["type"]
            record.title = content.title
            record.status = content.status.value
            record.details = document["details"]
            record.playback = document["playback"]
            record.controls = document["controls"]
            record.stats = document["stats"]
            record.error_info = document["error"]
            record.added_by = content.added_by
            record.added_at = content.added_at
        return content

    async def delete(self, content_id: str) -> bool:
        async with self._session() as db:
            result = await db.execute(delete(MediaContentRecord).where(MediaContentRecord.id == content_id))
            return (result.rowcount or 0) > 0

    async def delete_by_room(self, room_id: str) -> int:
        async with self._session() as db:
            result = await db.execute(delete(MediaContentRecord).where(MediaContentRecord.room_id == room_id))
            return result.rowcount or 0

    async def list_by_room(
        self,
        room_id: str,
        offset: int = 0,
        limit: Optional[int] = None,
        statuses: Optional[Iterable[ContentStatus]] = None,
    ) -> List[MediaContent]:
        query = select(MediaContentRecord).where(MediaContentRecord.room_id == room_id)
        if statuses is not None:
            query = query.where(MediaContentRecord.status.in_([s.value for s in statuses]))
        query = query.order_by(MediaContentRecord.added_at.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        async with self._session() as db:
            result = await db.execute(query)
            return [_to_entity(r) for r in result.scalars().all()]

    async def count_by_room(self, room_id: str) -> int:
        async with self._session() as db:
            result = await db.execute(
                select(func.count(MediaContentRecord.id)).where(MediaContentRecord.room_id == room_id)
            )
            return int(result.scalar() or 0)


def _to_entity(record: MediaContentRecord) -> MediaContent:
    return MediaContent.from_document({
        "content_id": record.id,
        "room_id": record.room_id,
        "type": record.type,
        "title": record.title,
        "status": record.status,
        "details": record.details,
        "playback": record.playback,
        "controls": record.controls,
        "stats": record.stats,
        "error": record.error_info,
        "added_by": record.added_by,
        "added_at": record.added_at,
    })
