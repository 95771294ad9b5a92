# app/core/container.py
"""
Explicitly constructed application services.

Built once by the FastAPI lifespan (or by a test) and passed around;
nothing here is a module-level singleton.
"""
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request, WebSocket

from app.core.config import Settings, settings as default_settings
from app.core.event_bus import EventBus
from app.core.websocket_manager import WebSocketManager
from app.domains.auth.entities import UserInfo
from app.domains.media.synchronizer import MediaSynchronizer
from app.domains.rooms.service import RoomService
from app.shared.utils.logger import get_logger
from app.shared.utils.text_filter import TextFilter, make_word_filter

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    event_bus: EventBus
    gateway: WebSocketManager
    rooms: RoomService
    media: MediaSynchronizer
    chat_filter: TextFilter
    started: bool = field(default=False)

    async def start(self):
        if self.started:
            return
        await self.gateway.start()
        self.started = True
        logger.info("Services started")

    async def shutdown(self):
        await self.media.shutdown()
        await self.gateway.stop()
        await self.gateway.close_all()
        self.started = False
        logger.info("Services stopped")


def build_services(
    settings: Optional[Settings] = None,
    room_repository=None,
    media_repository=None,
    chat_filter: Optional[TextFilter] = None,
) -> Services:
    settings = settings or default_settings
    if room_repository is None:
        from app.domains.rooms.repository import RoomRepository
        room_repository = RoomRepository()
    if media_repository is None:
        from app.domains.media.repository import MediaRepository
        media_repository = MediaRepository()

    event_bus = EventBus(handler_timeout=settings.PERSISTENCE_TIMEOUT * 3)
    gateway = WebSocketManager(
        event_bus,
        send_timeout=settings.BROADCAST_SEND_TIMEOUT,
        ping_interval=settings.WS_PING_INTERVAL,
        pong_timeout=settings.WS_PONG_TIMEOUT,
        max_message_size=settings.WS_MAX_MESSAGE_SIZE,
    )
    rooms = RoomService(room_repository, gateway, event_bus, settings)
    media = MediaSynchronizer(media_repository, rooms, gateway, settings)

    async def on_disconnect(room_id: str, user: UserInfo):
        await rooms.handle_disconnect(room_id, user)

    gateway.add_disconnect_listener(on_disconnect)

    return Services(
        settings=settings,
        event_bus=event_bus,
        gateway=gateway,
        rooms=rooms,
        media=media,
        chat_filter=chat_filter or make_word_filter(settings.CHAT_BLOCKED_WORDS),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> Services:
    return websocket.app.state.services
