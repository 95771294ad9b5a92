# app/domains/media/events.py
from typing import TYPE_CHECKING

from app.core.websocket_manager import InboundCommand, command_handler
from app.shared.exceptions import NotFound, ValidationError
from app.shared.utils.time import parse_dt

if TYPE_CHECKING:
    from app.core.container import Services


def _room_id(command: InboundCommand) -> str:
    if not command.room_id:
        raise NotFound("Not in a room", code="not_in_room")
    return command.room_id


def _content_id(command: InboundCommand) -> str:
    content_id = command.data.get("content_id")
    if not content_id:
        raise ValidationError("content_id is required", code="invalid_content_id")
    return content_id


def register_event_handlers(services: "Services"):
    media = services.media

    async def _on_start(command: InboundCommand):
        content = await media.start(
            _room_id(command), command.user.id, _content_id(command), command.data.get("position")
        )
        return {"content_id": content.content_id, "status": content.status.value}

    async def _on_pause(command: InboundCommand):
        content = await media.pause(_room_id(command), command.user.id, _content_id(command))
        return {"content_id": content.content_id, "current_position": content.playback.current_position}

    async def _on_stop(command: InboundCommand):
        return {"stopped": await media.stop_content(_room_id(command), command.user.id)}

    async def _on_seek(command: InboundCommand):
        await media.seek(_room_id(command), command.user.id, _content_id(command), command.data.get("position"))

    async def _on_volume(command: InboundCommand):
        await media.set_volume(_room_id(command), command.user.id, _content_id(command), command.data.get("volume"))

    async def _on_speed(command: InboundCommand):
        await media.set_playback_speed(
            _room_id(command), command.user.id, _content_id(command), command.data.get("speed")
        )

    async def _on_sync(command: InboundCommand):
        reported_at = command.data.get("reported_at")
        try:
            reported_at = parse_dt(reported_at)
        except (TypeError, ValueError) as e:
            raise ValidationError("reported_at must be an ISO timestamp", code="invalid_reported_at") from e
        await media.sync_position(
            _room_id(command),
            command.user.id,
            _content_id(command),
            command.data.get("position"),
            reported_at=reported_at,
        )

    async def _on_rate(command: InboundCommand):
        content = await media.add_rating(
            _room_id(command), command.user.id, _content_id(command), command.data.get("rating")
        )
        return content.stats.to_dict()

    async def _on_error(command: InboundCommand):
        await media.report_error(
            _room_id(command),
            command.user.id,
            _content_id(command),
            command.data.get("code") or "playback_failed",
            command.data.get("message"),
        )

    async def _on_reset(command: InboundCommand):
        content = await media.reset_content(_room_id(command), command.user.id, _content_id(command))
        return {"content_id": content.content_id, "status": content.status.value}

    async def _on_delete(command: InboundCommand):
        return {"deleted": await media.delete_content(_room_id(command), command.user.id, _content_id(command))}

    commands = {
        "media_start": _on_start,
        "media_pause": _on_pause,
        "media_stop": _on_stop,
        "media_seek": _on_seek,
        "media_volume": _on_volume,
        "media_speed": _on_speed,
        "media_sync": _on_sync,
        "media_rate": _on_rate,
        "media_error": _on_error,
        "media_reset": _on_reset,
        "media_delete": _on_delete,
    }
    for name, handler in commands.items():
        services.event_bus.subscribe(f"websocket:{name}", command_handler(services.gateway, handler))
