# app/domains/rooms/api.py
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from app.core.container import Services, get_services
from app.domains.auth.dependencies import get_current_user
from app.domains.auth.entities import UserInfo
from app.domains.rooms.schemas import (
    AddAdminRequest,
    AdmitRequest,
    BanRequest,
    ChangeMicCountRequest,
    CreateRoomRequest,
    MicCountChangeResponse,
    SeatFlagRequest,
    TargetUserRequest,
)

router = APIRouter()


@router.post("")
async def create_room(
    request: CreateRoomRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Создать комнату"""
    room = await services.rooms.create_room(
        owner=user,
        title=request.title,
        total_mics=request.total_mics,
        is_private=request.is_private,
        description=request.description,
        category=request.category,
        tags=request.tags,
        max_participants=request.max_participants,
    )
    return room.to_document()


@router.get("")
async def list_rooms(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return await services.rooms.list_active_rooms(page=page, limit=limit)


@router.get("/{room_id}")
async def get_room(
    room_id: str,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    snapshot = await services.rooms.snapshot(room_id, user.id)
    active = await services.media.get_active_content(room_id)
    snapshot["active_media"] = services.media.content_view(active) if active else None
    return snapshot


@router.post("/{room_id}/join")
async def join_room(room_id: str, user: UserInfo = Depends(get_current_user), services: Services = Depends(get_services)):
    outcome = await services.rooms.join_room(room_id, user, announce=True)
    return {"user_role": outcome.role.value, "room": outcome.snapshot}


@router.post("/{room_id}/leave")
async def leave_room(room_id: str, user: UserInfo = Depends(get_current_user), services: Services = Depends(get_services)):
    return asdict(await services.rooms.leave_room(room_id, user.id))


@router.put("/{room_id}/mic-count", response_model=MicCountChangeResponse)
async def change_mic_count(
    room_id: str,
    request: ChangeMicCountRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Изменить количество микрофонов (только владелец)"""
    change = await services.rooms.change_mic_count(room_id, user.id, request.new_count)
    return asdict(change)


@router.get("/{room_id}/mic-count/check")
async def check_mic_count(
    room_id: str,
    new_count: int,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.rooms.can_change_mic_count(room_id, user.id, new_count)


@router.get("/{room_id}/mic-stats")
async def mic_stats(room_id: str, services: Services = Depends(get_services)):
    return await services.rooms.mic_stats(room_id)


@router.get("/{room_id}/layout")
async def layout(room_id: str, services: Services = Depends(get_services)):
    return await services.rooms.layout(room_id)


@router.post("/{room_id}/seats/leave")
async def leave_seat(room_id: str, user: UserInfo = Depends(get_current_user), services: Services = Depends(get_services)):
    return {"left": await services.rooms.leave_seat(room_id, user.id)}


@router.post("/{room_id}/seats/{seat_number}/join")
async def join_seat(
    room_id: str,
    seat_number: int,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.rooms.join_seat(room_id, user.id, seat_number)


@router.post("/{room_id}/seats/{seat_number}/mute")
async def mute_seat(
    room_id: str,
    seat_number: int,
    request: SeatFlagRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    seat = await services.rooms.set_seat_muted(room_id, user.id, seat_number, request.value)
    return seat.to_dict()


@router.post("/{room_id}/seats/{seat_number}/lock")
async def lock_seat(
    room_id: str,
    seat_number: int,
    request: SeatFlagRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    seat = await services.rooms.set_seat_locked(room_id, user.id, seat_number, request.value)
    return seat.to_dict()


@router.post("/{room_id}/queue")
async def request_queue(room_id: str, user: UserInfo = Depends(get_current_user), services: Services = Depends(get_services)):
    return {"position": await services.rooms.request_queue(room_id, user.id)}


@router.delete("/{room_id}/queue")
async def leave_queue(room_id: str, user: UserInfo = Depends(get_current_user), services: Services = Depends(get_services)):
    return {"removed": await services.rooms.remove_from_queue(room_id, user.id)}


@router.post("/{room_id}/queue/admit")
async def admit_from_queue(
    room_id: str,
    request: AdmitRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return {"admitted": await services.rooms.admit_from_queue(room_id, user.id, request.seat_number)}


@router.post("/{room_id}/bans")
async def ban_user(
    room_id: str,
    request: BanRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Забанить пользователя в комнате"""
    ban = await services.rooms.ban(
        room_id, user.id, request.user_id, reason=request.reason, duration_minutes=request.duration_minutes
    )
    return ban.to_dict()


@router.get("/{room_id}/bans/{user_id}")
async def ban_status(room_id: str, user_id: str, services: Services = Depends(get_services)):
    return {"user_id": user_id, "is_banned": await services.rooms.is_banned(room_id, user_id)}


@router.delete("/{room_id}/bans/{user_id}")
async def unban_user(
    room_id: str,
    user_id: str,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return {"unbanned": await services.rooms.unban(room_id, user.id, user_id)}


@router.post("/{room_id}/kick")
async def kick_user(
    room_id: str,
    request: TargetUserRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return asdict(await services.rooms.kick(room_id, user.id, request.user_id))


@router.post("/{room_id}/admins")
async def add_admin(
    room_id: str,
    request: AddAdminRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    admin = await services.rooms.add_admin(room_id, user.id, request.user_id, request.permissions)
    return admin.to_dict()


@router.delete("/{room_id}/admins/{user_id}")
async def remove_admin(
    room_id: str,
    user_id: str,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return {"removed": await services.rooms.remove_admin(room_id, user.id, user_id)}


@router.post("/{room_id}/invitations")
async def invite_user(
    room_id: str,
    request: TargetUserRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    invitation = await services.rooms.invite(room_id, user.id, request.user_id)
    return invitation.to_dict()


@router.post("/{room_id}/end")
async def end_room(room_id: str, user: UserInfo = Depends(get_current_user), services: Services = Depends(get_services)):
    """Завершить комнату (только владелец)"""
    room = await services.rooms.end_room(room_id, user.id)
    return {"room_id": room.room_id, "status": room.status.value}
