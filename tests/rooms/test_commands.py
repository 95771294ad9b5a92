from app.core.websocket_manager import ConnectionInfo, InboundCommand

from tests.helpers import FakeWebSocket, make_user


def connection(user_id, room_id=None):
    info = ConnectionInfo(FakeWebSocket(), make_user(user_id))
    info.room_id = room_id
    return info


async def send(services, info, frame_type, **data):
    await services.event_bus.publish(f"websocket:{frame_type}", InboundCommand(frame_type, data, info))


def replies(gateway, info, frame_type):
    return [m for ws, m in gateway.direct if ws is info.websocket and m["type"] == frame_type]


async def test_join_room_command_delivers_snapshot_with_media(services, room, gateway):
    bob = connection("bob")

    await send(services, bob, "join_room", room_id=room.room_id)

    ws, room_id, role, snapshot, delta = gateway.joined[0]
    assert ws is bob.websocket and room_id == room.room_id
    assert role == "listener"
    assert snapshot["event"] == "room_joined" and "active_media" in snapshot
    assert delta["event"] == "user_joined"


async def test_join_seat_command_acks(services, room, gateway):
    bob = connection("bob", room.room_id)
    await services.rooms.join_room(room.room_id, bob.user)

    await send(services, bob, "join_seat", seat_number=3)
    await send(services, bob, "join_seat", seat_number="3")

    assert replies(gateway, bob, "ack")[0]["result"] == {"seat_number": 3, "from_seat": None}
    assert replies(gateway, bob, "error")[0]["error"]["code"] == "invalid_seat_number"


async def test_mic_count_change_by_listener_is_an_error_frame(services, room, gateway):
    bob = connection("bob", room.room_id)
    await services.rooms.join_room(room.room_id, bob.user)

    await send(services, bob, "change_mic_count", new_count=6)

    error = replies(gateway, bob, "error")[0]
    assert error["command"] == "change_mic_count"
    assert error["error"]["kind"] == "forbidden"
    assert gateway.events("mic_count_changed") == []


async def test_chat_is_filtered_and_relayed(services, room, gateway):
    owner = connection("owner", room.room_id)

    await send(services, owner, "send_message", text="  well darn it  ")

    message = gateway.events("new_message")[0]
    assert message["text"] == "well **** it"
    assert message["was_filtered"] is True
    assert message["sender_role"] == "owner"


async def test_chat_from_outsider_is_rejected(services, room, gateway):
    stranger = connection("stranger", room.room_id)

    await send(services, stranger, "send_message", text="hi")
    await send(services, stranger, "send_message", text="   ")

    codes = [m["error"]["code"] for m in replies(gateway, stranger, "error")]
    assert codes == ["not_in_room", "empty_message"]
    assert gateway.events("new_message") == []


async def test_command_without_room(services, gateway):
    lost = connection("lost")

    await send(services, lost, "leave_seat")

    assert replies(gateway, lost, "error")[0]["error"]["code"] == "not_in_room"


async def test_media_commands(services, room, gateway):
    owner = connection("owner", room.room_id)
    track = await services.media.add_youtube_content(room.room_id, "owner", "abc123", {"duration": 100})

    await send(services, owner, "media_start", content_id=track.content_id, position=5)
    await send(services, owner, "media_rate", content_id=track.content_id, rating=5)
    await send(services, owner, "media_pause")

    acks = replies(gateway, owner, "ack")
    assert acks[0]["result"] == {"content_id": track.content_id, "status": "active"}
    assert acks[1]["result"]["average_rating"] == 5.0
    assert replies(gateway, owner, "error")[0]["error"]["code"] == "invalid_content_id"


async def test_join_room_from_another_room_leaves_it(services, rooms, room, gateway, owner):
    other = await rooms.create_room(owner, "Other", total_mics=6)
    bob = connection("bob", room.room_id)
    await rooms.join_room(room.room_id, bob.user)
    await rooms.join_seat(room.room_id, "bob", 3)

    await send(services, bob, "join_room", room_id=other.room_id)

    assert gateway.left == [bob.websocket]
    previous = await rooms.get_room(room.room_id)
    assert not previous.is_present("bob") and previous.seat_of("bob") is None
    assert gateway.events("user_left", room.room_id)[-1]["reason"] == "switched_room"
    assert gateway.joined[-1][1] == other.room_id
