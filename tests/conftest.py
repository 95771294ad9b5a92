import pytest

from app.core.config import Settings
from app.core.container import Services
from app.core.event_bus import EventBus
from app.domains.media import events as media_events
from app.domains.media.synchronizer import MediaSynchronizer
from app.domains.rooms import events as rooms_events
from app.domains.rooms.service import RoomService
from app.shared.utils.text_filter import make_word_filter

from tests.fakes import InMemoryMediaRepository, InMemoryRoomRepository, RecordingGateway
from tests.helpers import make_user


@pytest.fixture
def settings():
    return Settings(
        MEDIA_SYNC_INTERVAL=0.02,
        PERSISTENCE_TIMEOUT=1.0,
        BROADCAST_SEND_TIMEOUT=0.1,
        CHAT_BLOCKED_WORDS=["darn"],
    )


@pytest.fixture
def room_repo():
    return InMemoryRoomRepository()


@pytest.fixture
def media_repo():
    return InMemoryMediaRepository()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def event_bus():
    return EventBus(handler_timeout=2.0)


@pytest.fixture
def rooms(room_repo, gateway, event_bus, settings):
    return RoomService(room_repo, gateway, event_bus, settings)


@pytest.fixture
async def media(media_repo, rooms, gateway, settings):
    synchronizer = MediaSynchronizer(media_repo, rooms, gateway, settings)
    yield synchronizer
    await synchronizer.shutdown()


@pytest.fixture
def services(settings, event_bus, gateway, rooms, media):
    services = Services(
        settings=settings,
        event_bus=event_bus,
        gateway=gateway,
        rooms=rooms,
        media=media,
        chat_filter=make_word_filter(settings.CHAT_BLOCKED_WORDS),
    )
    rooms_events.register_event_handlers(services)
    media_events.register_event_handlers(services)
    return services


@pytest.fixture
def owner():
    return make_user("owner")


@pytest.fixture
async def room(rooms, owner):
    """A 12-mic public room with the owner present"""
    created = await rooms.create_room(owner, "Evening talk", total_mics=12)
    await rooms.join_room(created.room_id, owner)
    return await rooms.get_room(created.room_id)

