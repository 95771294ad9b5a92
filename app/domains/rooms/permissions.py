# app/domains/rooms/permissions.py
"""
Single place where a user's role in a room is derived.

owner > admin > speaker (seated) > listener > guest
"""
from typing import Optional

from app.shared.exceptions import Forbidden, UserBanned

from .entities import PERMISSIONS, Room, RoomRole

ROLE_RANK = {
    RoomRole.GUEST: 0,
    RoomRole.LISTENER: 1,
    RoomRole.SPEAKER: 2,
    RoomRole.ADMIN: 3,
    RoomRole.OWNER: 4,
}


def role_of(room: Room, user_id: str) -> RoomRole:
    if room.owner_id == user_id:
        return RoomRole.OWNER
    if user_id in room.admins:
        return RoomRole.ADMIN
    if room.seat_of(user_id) is not None:
        return RoomRole.SPEAKER
    if user_id in room.listeners:
        return RoomRole.LISTENER
    return RoomRole.GUEST


def is_privileged(room: Room, user_id: str) -> bool:
    return role_of(room, user_id) in (RoomRole.OWNER, RoomRole.ADMIN)


def has_permission(room: Room, user_id: str, permission: str) -> bool:
    """Owner has every permission, admins have their flags, nobody else has any"""
    if permission not in PERMISSIONS:
        raise ValueError(f"Unknown room permission: {permission}")
    role = role_of(room, user_id)
    if role == RoomRole.OWNER:
        return True
    if role == RoomRole.ADMIN:
        return room.admins[user_id].permissions.allows(permission)
    return False


def outranks(room: Room, actor_id: str, target_id: str) -> bool:
    return ROLE_RANK[role_of(room, actor_id)] > ROLE_RANK[role_of(room, target_id)]


def ensure_not_banned(room: Room, user_id: str):
    ban = room.active_ban(user_id)
    if ban is not None:
        until = ban.expires_at.isoformat() if ban.expires_at else "permanently"
        raise UserBanned(f"You are banned from this room ({until})")


def require_owner(room: Room, user_id: str, action: str):
    if room.owner_id != user_id:
        raise Forbidden(f"Only the room owner can {action}")


def require_permission(room: Room, user_id: str, permission: str, action: Optional[str] = None):
    if not has_permission(room, user_id, permission):
        raise Forbidden(f"Not allowed to {action or permission.replace('_', ' ')}")
