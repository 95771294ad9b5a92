# app/domains/rooms/entities.py
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from app.shared.exceptions import InvariantViolation
from app.shared.utils.time import format_dt, parse_dt, utcnow

from .queue import WaitingQueue, WaitingQueueEntry


class RoomRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    SPEAKER = "speaker"  # на микрофоне
    LISTENER = "listener"
    GUEST = "guest"  # не в комнате


class RoomStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"
    SCHEDULED = "scheduled"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


@dataclass
class Seat:
    seat_number: int
    user_id: Optional[str] = None
    is_vip: bool = False
    is_muted: bool = False
    is_locked: bool = False
    joined_at: Optional[datetime] = None

    @property
    def is_occupied(self) -> bool:
        return self.user_id is not None

    def clear(self):
        self.user_id = None
        self.joined_at = None
        self.is_muted = False

    def to_dict(self) -> dict:
        return {
            "seat_number": self.seat_number,
            "user_id": self.user_id,
            "is_vip": self.is_vip,
            "is_muted": self.is_muted,
            "is_locked": self.is_locked,
            "joined_at": format_dt(self.joined_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Seat":
        return cls(
            seat_number=int(data["seat_number"]),
            user_id=data.get("user_id"),
            is_vip=bool(data.get("is_vip", False)),
            is_muted=bool(data.get("is_muted", False)),
            is_locked=bool(data.get("is_locked", False)),
            joined_at=parse_dt(data.get("joined_at")),
        )


@dataclass
class AdminPermissions:
    can_kick: bool = True
    can_mute: bool = True
    can_manage_seats: bool = True
    can_manage_chat: bool = False
    can_manage_music: bool = False
    can_invite_users: bool = True
    can_ban: bool = True

    def allows(self, permission: str) -> bool:
        return bool(getattr(self, permission, False))

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AdminPermissions":
        known = {f.name for f in fields(cls)}
        return cls(**{k: bool(v) for k, v in (data or {}).items() if k in known})


PERMISSIONS = tuple(f.name for f in fields(AdminPermissions))


@dataclass
class Admin:
    user_id: str
    permissions: AdminPermissions = field(default_factory=AdminPermissions)
    assigned_at: datetime = field(default_factory=utcnow)
    assigned_by: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "permissions": self.permissions.to_dict(),
            "assigned_at": format_dt(self.assigned_at),
            "assigned_by": self.assigned_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Admin":
        return cls(
            user_id=data["user_id"],
            permissions=AdminPermissions.from_dict(data.get("permissions")),
            assigned_at=parse_dt(data.get("assigned_at")) or utcnow(),
            assigned_by=data.get("assigned_by"),
        )


@dataclass
class Ban:
    user_id: str
    banned_by: str
    reason: Optional[str] = None
    banned_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None  # None = навсегда

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is None or self.expires_at > (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "banned_by": self.banned_by,
            "reason": self.reason,
            "banned_at": format_dt(self.banned_at),
            "expires_at": format_dt(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Ban":
        return cls(
            user_id=data["user_id"],
            banned_by=data.get("banned_by") or "",
            reason=data.get("reason"),
            banned_at=parse_dt(data.get("banned_at")) or utcnow(),
            expires_at=parse_dt(data.get("expires_at")),
        )


@dataclass
class Listener:
    user_id: str
    joined_at: datetime = field(default_factory=utcnow)
    last_seen: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "joined_at": format_dt(self.joined_at),
            "last_seen": format_dt(self.last_seen),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Listener":
        return cls(
            user_id=data["user_id"],
            joined_at=parse_dt(data.get("joined_at")) or utcnow(),
            last_seen=parse_dt(data.get("last_seen")) or utcnow(),
        )


@dataclass
class Invitation:
    user_id: str
    invited_by: str
    expires_at: datetime
    invited_at: datetime = field(default_factory=utcnow)
    status: InvitationStatus = InvitationStatus.PENDING

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.status == InvitationStatus.PENDING and self.expires_at > (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "invited_by": self.invited_by,
            "expires_at": format_dt(self.expires_at),
            "invited_at": format_dt(self.invited_at),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Invitation":
        return cls(
            user_id=data["user_id"],
            invited_by=data.get("invited_by") or "",
            expires_at=parse_dt(data["expires_at"]),
            invited_at=parse_dt(data.get("invited_at")) or utcnow(),
            status=InvitationStatus(data.get("status", "pending")),
        )


@dataclass
class MicPermissions:
    require_approval_to_speak: bool = False
    auto_mute_new_speakers: bool = False
    allow_self_mute: bool = True
    allow_self_unmute: bool = True
    priority_queue: bool = True  # админы впереди в очереди


@dataclass
class ChatSettings:
    is_enabled: bool = True
    allow_emojis: bool = True
    slow_mode: int = 0  # секунд между сообщениями
    bad_words_filter: bool = True


@dataclass
class RoomSettings:
    is_private: bool = False
    max_participants: int = 50
    auto_arrangement: bool = True
    mic: MicPermissions = field(default_factory=MicPermissions)
    chat: ChatSettings = field(default_factory=ChatSettings)

    def to_dict(self) -> dict:
        return {
            "is_private": self.is_private,
            "max_participants": self.max_participants,
            "auto_arrangement": self.auto_arrangement,
            "mic": {f.name: getattr(self.mic, f.name) for f in fields(self.mic)},
            "chat": {f.name: getattr(self.chat, f.name) for f in fields(self.chat)},
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RoomSettings":
        data = data or {}
        mic_known = {f.name for f in fields(MicPermissions)}
        chat_known = {f.name for f in fields(ChatSettings)}
        return cls(
            is_private=bool(data.get("is_private", False)),
            max_participants=int(data.get("max_participants", 50)),
            auto_arrangement=bool(data.get("auto_arrangement", True)),
            mic=MicPermissions(**{k: v for k, v in (data.get("mic") or {}).items() if k in mic_known}),
            chat=ChatSettings(**{k: v for k, v in (data.get("chat") or {}).items() if k in chat_known}),
        )


@dataclass
class RoomStats:
    total_joins: int = 0
    total_messages: int = 0
    peak_participants: int = 0
    last_activity: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "total_joins": self.total_joins,
            "total_messages": self.total_messages,
            "peak_participants": self.peak_participants,
            "last_activity": format_dt(self.last_activity),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RoomStats":
        data = data or {}
        return cls(
            total_joins=int(data.get("total_joins", 0)),
            total_messages=int(data.get("total_messages", 0)),
            peak_participants=int(data.get("peak_participants", 0)),
            last_activity=parse_dt(data.get("last_activity")) or utcnow(),
        )


@dataclass
class Room:
    room_id: str
    owner_id: str
    title: str
    total_mics: int
    vip_mics: int
    seats: List[Seat]
    description: Optional[str] = None
    category: str = "general"
    tags: List[str] = field(default_factory=list)
    status: RoomStatus = RoomStatus.ACTIVE
    admins: Dict[str, Admin] = field(default_factory=dict)
    banned_users: Dict[str, Ban] = field(default_factory=dict)
    waiting_queue: WaitingQueue = field(default_factory=WaitingQueue)
    listeners: Dict[str, Listener] = field(default_factory=dict)
    invitations: Dict[str, Invitation] = field(default_factory=dict)
    settings: RoomSettings = field(default_factory=RoomSettings)
    stats: RoomStats = field(default_factory=RoomStats)
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)
    version: int = 0

    @property
    def guest_mics(self) -> int:
        return self.total_mics - self.vip_mics

    @property
    def is_ended(self) -> bool:
        return self.status == RoomStatus.ENDED

    def seat_of(self, user_id: str) -> Optional[Seat]:
        for seat in self.seats:
            if seat.user_id == user_id:
                return seat
        return None

    def find_seat(self, seat_number: int) -> Optional[Seat]:
        if 1 <= seat_number <= len(self.seats):
            seat = self.seats[seat_number - 1]
            if seat.seat_number == seat_number:
                return seat
        for seat in self.seats:
            if seat.seat_number == seat_number:
                return seat
        return None

    def active_ban(self, user_id: str, now: Optional[datetime] = None) -> Optional[Ban]:
        ban = self.banned_users.get(user_id)
        if ban and ban.is_active(now):
            return ban
        return None

    def is_banned(self, user_id: str, now: Optional[datetime] = None) -> bool:
        return self.active_ban(user_id, now) is not None

    def seated_user_ids(self) -> List[str]:
        return [seat.user_id for seat in self.seats if seat.user_id]

    def is_present(self, user_id: str) -> bool:
        return user_id in self.listeners or self.seat_of(user_id) is not None

    def participant_count(self) -> int:
        return len(self.seated_user_ids()) + len(self.listeners)

    def update_peak_participants(self) -> int:
        self.stats.peak_participants = max(self.stats.peak_participants, self.participant_count())
        return self.stats.peak_participants

    def touch(self, now: Optional[datetime] = None):
        now = now or utcnow()
        self.stats.last_activity = now
        self.last_active_at = now

    def mic_stats(self) -> dict:
        occupied = sum(1 for s in self.seats if s.is_occupied)
        occupied_vip = sum(1 for s in self.seats[: self.vip_mics] if s.is_occupied)
        muted = sum(1 for s in self.seats if s.is_occupied and s.is_muted)
        return {
            "total": self.total_mics,
            "occupied": occupied,
            "available": self.total_mics - occupied,
            "vip": {
                "total": self.vip_mics,
                "occupied": occupied_vip,
                "available": self.vip_mics - occupied_vip,
            },
            "guest": {
                "total": self.guest_mics,
                "occupied": occupied - occupied_vip,
                "available": self.guest_mics - (occupied - occupied_vip),
            },
            "muted": muted,
            "waiting_queue": len(self.waiting_queue),
        }

    def check_invariants(self):
        """Raise InvariantViolation if the aggregate is internally inconsistent"""
        if len(self.seats) != self.total_mics:
            raise InvariantViolation(
                f"Room {self.room_id}: {len(self.seats)} seats for {self.total_mics} mics"
            )
        if self.vip_mics + self.guest_mics != self.total_mics:
            raise InvariantViolation(f"Room {self.room_id}: vip/guest split broken")
        for index, seat in enumerate(self.seats):
            if seat.seat_number != index + 1:
                raise InvariantViolation(f"Room {self.room_id}: seat order broken at {index + 1}")
            if seat.is_vip != (seat.seat_number <= self.vip_mics):
                raise InvariantViolation(
                    f"Room {self.room_id}: seat {seat.seat_number} has wrong VIP flag"
                )
        seated = self.seated_user_ids()
        if len(seated) != len(set(seated)):
            raise InvariantViolation(f"Room {self.room_id}: user seated twice")
        if self.owner_id in self.admins:
            raise InvariantViolation(f"Room {self.room_id}: owner listed as admin")
        queued = self.waiting_queue.user_ids()
        if len(queued) != len(set(queued)):
            raise InvariantViolation(f"Room {self.room_id}: user queued twice")
        for user_id in set(seated) | set(self.listeners) | set(queued):
            if self.is_banned(user_id):
                raise InvariantViolation(f"Room {self.room_id}: banned user {user_id} still present")

    def to_document(self) -> dict:
        return {
            "room_id": self.room_id,
            "owner_id": self.owner_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "status": self.status.value,
            "total_mics": self.total_mics,
            "vip_mics": self.vip_mics,
            "guest_mics": self.guest_mics,
            "seats": [seat.to_dict() for seat in self.seats],
            "admins": [admin.to_dict() for admin in self.admins.values()],
            "banned_users": [ban.to_dict() for ban in self.banned_users.values()],
            "waiting_queue": [
                {
                    "user_id": entry.user_id,
                    "priority": entry.priority,
                    "requested_at": format_dt(entry.requested_at),
                }
                for entry in self.waiting_queue
            ],
            "listeners": [listener.to_dict() for listener in self.listeners.values()],
            "invitations": [inv.to_dict() for inv in self.invitations.values()],
            "settings": self.settings.to_dict(),
            "stats": self.stats.to_dict(),
            "created_at": format_dt(self.created_at),
            "last_active_at": format_dt(self.last_active_at),
            "version": self.version,
        }

    @classmethod
    def from_document(cls, data: dict) -> "Room":
        return cls(
            room_id=data["room_id"],
            owner_id=data["owner_id"],
            title=data["title"],
            description=data.get("description"),
            category=data.get("category") or "general",
            tags=list(data.get("tags") or []),
            status=RoomStatus(data.get("status", "active")),
            total_mics=int(data["total_mics"]),
            vip_mics=int(data["vip_mics"]),
            seats=[Seat.from_dict(s) for s in data.get("seats", [])],
            admins={a["user_id"]: Admin.from_dict(a) for a in data.get("admins", [])},
            banned_users={b["user_id"]: Ban.from_dict(b) for b in data.get("banned_users", [])},
            waiting_queue=WaitingQueue(
                [
                    WaitingQueueEntry(
                        user_id=e["user_id"],
                        priority=int(e.get("priority", 0)),
                        requested_at=parse_dt(e.get("requested_at")) or utcnow(),
                    )
                    for e in data.get("waiting_queue", [])
                ]
            ),
            listeners={l["user_id"]: Listener.from_dict(l) for l in data.get("listeners", [])},
            invitations={i["user_id"]: Invitation.from_dict(i) for i in data.get("invitations", [])},
            settings=RoomSettings.from_dict(data.get("settings")),
            stats=RoomStats.from_dict(data.get("stats")),
            created_at=parse_dt(data.get("created_at")) or utcnow(),
            last_active_at=parse_dt(data.get("last_active_at")) or utcnow(),
            version=int(data.get("version", 0)),
        )
