import asyncio
import json

import pytest

from app.core.container import build_services
from app.domains.media import events as media_events
from app.domains.rooms import events as rooms_events

from tests.helpers import FakeWebSocket, make_user


@pytest.fixture
async def live(settings, room_repo, media_repo):
    """Command handlers wired to a real WebSocketManager"""
    services = build_services(settings, room_repository=room_repo, media_repository=media_repo)
    rooms_events.register_event_handlers(services)
    media_events.register_event_handlers(services)
    yield services
    await services.media.shutdown()


async def open_socket(services, user_id):
    ws = FakeWebSocket()
    await services.gateway.connect(ws, make_user(user_id))
    return ws


async def send(services, ws, frame_type, **data):
    await services.gateway.handle_message(ws, json.dumps({"type": frame_type, **data}))


async def new_room(services, title):
    owner = make_user("owner")
    room = await services.rooms.create_room(owner, title, total_mics=12)
    await services.rooms.join_room(room.room_id, owner)
    return room.room_id


async def test_switching_rooms_leaves_the_old_room(live):
    first = await new_room(live, "First")
    second = await new_room(live, "Second")
    alice = await open_socket(live, "alice")
    bob = await open_socket(live, "bob")
    await send(live, alice, "join_room", room_id=first)
    await send(live, bob, "join_room", room_id=first)
    await send(live, bob, "join_seat", seat_number=3)

    await send(live, bob, "join_room", room_id=second)

    old = await live.rooms.get_room(first)
    assert old.seat_of("bob") is None
    assert not old.is_present("bob")
    assert old.participant_count() == 2
    assert not live.gateway.is_user_in_room(first, "bob")
    left = alice.events("user_left")
    assert [(m["user_id"], m["reason"], m["was_on_mic"]) for m in left] == [("bob", "switched_room", True)]
    assert alice.events("mic_update")[-1]["action"] == "user_left_mic"

    assert (await live.rooms.get_room(second)).is_present("bob")
    assert live.gateway.connection_info[bob].room_id == second


async def test_switch_keeps_presence_while_another_socket_stays(live):
    first = await new_room(live, "First")
    second = await new_room(live, "Second")
    phone = await open_socket(live, "bob")
    laptop = await open_socket(live, "bob")
    await send(live, phone, "join_room", room_id=first)
    await send(live, laptop, "join_room", room_id=first)

    await send(live, laptop, "join_room", room_id=second)

    assert (await live.rooms.get_room(first)).is_present("bob")
    assert live.gateway.is_user_in_room(first, "bob")


async def test_joiner_sees_changes_made_while_joining(live, monkeypatch):
    room_id = await new_room(live, "Busy")
    await live.rooms.join_room(room_id, make_user("alice"))
    bob = await open_socket(live, "bob")

    lookup = live.media.get_active_content

    async def slow_lookup(room_id):
        await asyncio.sleep(0.05)
        return await lookup(room_id)

    monkeypatch.setattr(live.media, "get_active_content", slow_lookup)

    async def take_seat():
        await asyncio.sleep(0.01)
        await live.rooms.join_seat(room_id, "alice", 3)

    await asyncio.gather(send(live, bob, "join_room", room_id=room_id), take_seat())

    seats = bob.events("room_joined")[0]["room"]["seats"]
    seen = seats[2]["user_id"]
    updates = [m for m in bob.events("mic_update") if m["user_id"] == "alice"]
    assert seen == "alice" or updates
    assert (await live.rooms.get_room(room_id)).seats[2].user_id == "alice"
