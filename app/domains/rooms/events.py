# app/domains/rooms/events.py
from typing import TYPE_CHECKING

from app.core.websocket_manager import InboundCommand, command_handler
from app.shared.exceptions import NotFound, ValidationError
from app.shared.schemas.events import NewMessage

if TYPE_CHECKING:
    from app.core.container import Services

MAX_MESSAGE_LENGTH = 1000


def _room_id(command: InboundCommand) -> str:
    room_id = command.room_id
    if not room_id:
        raise NotFound("Not in a room", code="not_in_room")
    return room_id


def _int_field(command: InboundCommand, name: str) -> int:
    value = command.data.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", code=f"invalid_{name}")
    return value


def _user_field(command: InboundCommand) -> str:
    user_id = command.data.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise ValidationError("user_id is required", code="invalid_user_id")
    return user_id


def register_event_handlers(services: "Services"):
    rooms = services.rooms
    gateway = services.gateway
    media = services.media

    async def _on_join_room(command: InboundCommand):
        room_id = command.data.get("room_id")
        if not room_id:
            raise ValidationError("room_id is required", code="invalid_room_id")
        connection = command.connection
        previous = connection.room_id
        if previous and previous != room_id:
            await gateway.leave_room(connection.websocket)
            if not gateway.is_user_in_room(previous, command.user.id):
                await rooms.handle_disconnect(previous, command.user, reason="switched_room")

        async def subscribe(outcome):
            snapshot = dict(outcome.snapshot)
            active = await media.get_active_content(room_id)
            snapshot["active_media"] = media.content_view(active) if active else None
            await gateway.join_room(connection.websocket, room_id, outcome.role.value, snapshot, outcome.delta)

        await rooms.join_room(room_id, command.user, on_joined=subscribe)

    async def _on_leave_room(command: InboundCommand):
        room_id = _room_id(command)
        await gateway.leave_room(command.connection.websocket)
        outcome = await rooms.leave_room(room_id, command.user.id)
        return {"room_id": room_id, "was_on_mic": outcome.was_on_mic}

    async def _on_join_seat(command: InboundCommand):
        return await rooms.join_seat(_room_id(command), command.user.id, _int_field(command, "seat_number"))

    async def _on_leave_seat(command: InboundCommand):
        return {"left": await rooms.leave_seat(_room_id(command), command.user.id)}

    async def _on_change_mic_count(command: InboundCommand):
        change = await rooms.change_mic_count(_room_id(command), command.user.id, _int_field(command, "new_count"))
        return {"old_count": change.old_count, "new_count": change.new_count, "overflow_users": change.overflow_users}

    async def _on_request_queue(command: InboundCommand):
        return {"position": await rooms.request_queue(_room_id(command), command.user.id)}

    async def _on_leave_queue(command: InboundCommand):
        return {"removed": await rooms.remove_from_queue(_room_id(command), command.user.id)}

    async def _on_admit_from_queue(command: InboundCommand):
        seat_number = command.data.get("seat_number")
        if seat_number is not None:
            seat_number = _int_field(command, "seat_number")
        return {"admitted": await rooms.admit_from_queue(_room_id(command), command.user.id, seat_number)}

    async def _on_ban_user(command: InboundCommand):
        duration = command.data.get("duration_minutes")
        if duration is not None:
            duration = _int_field(command, "duration_minutes")
        ban = await rooms.ban(
            _room_id(command),
            command.user.id,
            _user_field(command),
            reason=command.data.get("reason"),
            duration_minutes=duration,
        )
        return ban.to_dict()

    async def _on_unban_user(command: InboundCommand):
        return {"unbanned": await rooms.unban(_room_id(command), command.user.id, _user_field(command))}

    async def _on_kick_user(command: InboundCommand):
        await rooms.kick(_room_id(command), command.user.id, _user_field(command))
        return {"kicked": True}

    async def _on_mute_seat(command: InboundCommand):
        seat = await rooms.set_seat_muted(
            _room_id(command), command.user.id, _int_field(command, "seat_number"), bool(command.data.get("muted", True))
        )
        return seat.to_dict()

    async def _on_lock_seat(command: InboundCommand):
        seat = await rooms.set_seat_locked(
            _room_id(command), command.user.id, _int_field(command, "seat_number"), bool(command.data.get("locked", True))
        )
        return seat.to_dict()

    async def _on_add_admin(command: InboundCommand):
        admin = await rooms.add_admin(
            _room_id(command), command.user.id, _user_field(command), command.data.get("permissions")
        )
        return admin.to_dict()

    async def _on_remove_admin(command: InboundCommand):
        return {"removed": await rooms.remove_admin(_room_id(command), command.user.id, _user_field(command))}

    async def _on_invite_user(command: InboundCommand):
        invitation = await rooms.invite(_room_id(command), command.user.id, _user_field(command))
        return invitation.to_dict()

    async def _on_end_room(command: InboundCommand):
        await rooms.end_room(_room_id(command), command.user.id)
        return {"ended": True}

    async def _on_send_message(command: InboundCommand):
        room_id = _room_id(command)
        text = command.data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text is required", code="empty_message")
        text = text.strip()
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message longer than {MAX_MESSAGE_LENGTH} characters", code="message_too_long")

        role = await rooms.record_message(room_id, command.user.id)
        room = await rooms.get_room(room_id)
        was_filtered = False
        if room.settings.chat.bad_words_filter:
            verdict = services.chat_filter(text)
            was_filtered = not verdict["clean"]
            text = verdict["filtered_text"]

        message = NewMessage(
            room_id=room_id,
            sender=command.user.to_dict(),
            sender_role=role.value,
            text=text,
            was_filtered=was_filtered,
            reply_to=command.data.get("reply_to"),
        )
        await gateway.broadcast(room_id, message.payload())

    async def _on_room_ended(event: dict):
        await media.end_room_media(event["room_id"])

    async def _on_user_joined(event: dict):
        await media.record_listener(event["room_id"])

    commands = {
        "join_room": _on_join_room,
        "leave_room": _on_leave_room,
        "join_seat": _on_join_seat,
        "leave_seat": _on_leave_seat,
        "change_mic_count": _on_change_mic_count,
        "request_queue": _on_request_queue,
        "leave_queue": _on_leave_queue,
        "admit_from_queue": _on_admit_from_queue,
        "ban_user": _on_ban_user,
        "unban_user": _on_unban_user,
        "kick_user": _on_kick_user,
        "mute_seat": _on_mute_seat,
        "lock_seat": _on_lock_seat,
        "add_admin": _on_add_admin,
        "remove_admin": _on_remove_admin,
        "invite_user": _on_invite_user,
        "end_room": _on_end_room,
        "send_message": _on_send_message,
    }
    for name, handler in commands.items():
        services.event_bus.subscribe(f"websocket:{name}", command_handler(gateway, handler))

    services.event_bus.subscribe("room:ended", _on_room_ended)
    services.event_bus.subscribe("room:user_joined", _on_user_joined)
