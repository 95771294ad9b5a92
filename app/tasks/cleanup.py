from typing import Optional

from asgiref.sync import async_to_sync

from app.core.celery import celery_app
from app.core.config import settings
from app.domains.rooms.repository import RoomRepository
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)


async def end_inactive_rooms(hours: int) -> list:
    return await RoomRepository().end_inactive_rooms(hours)


@celery_app.task
def cleanup_inactive_rooms_task(hours: Optional[int] = None):
    hours = hours or settings.ROOM_INACTIVITY_HOURS
    ended = async_to_sync(end_inactive_rooms)(hours)
    logger.info(f"Inactivity sweep ended {len(ended)} rooms idle for more than {hours}h")
    return ended
