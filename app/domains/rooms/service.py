# app/domains/rooms/service.py
"""
Room aggregate service.

Every mutation of a room runs under that room's lock on a working copy of
the aggregate: validate, mutate, check invariants, persist, then swap the
copy into the cache. Event payloads are built inside the lock and broadcast
after it is released, so fan-out never observes a half-updated room and a
rejected command leaves no trace.
"""
import asyncio
import copy
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from app.core.event_bus import EventBus
from app.domains.auth.entities import UserInfo
from app.shared.exceptions import (
    AlreadyBanned,
    AlreadySeated,
    ConflictError,
    Forbidden,
    InvariantViolation,
    NotFound,
    PersistenceError,
    RoomEnded,
    RoomNotFound,
    SeatLocked,
    SeatNotFound,
    SeatTaken,
    ValidationError,
    VipSeatForbidden,
)
from app.shared.schemas.events import (
    AdminsUpdated,
    MicCountChanged,
    MicUpdate,
    QueueUpdated,
    RoomEndedEvent,
    RoomEvent,
    RoomJoined,
    UserBannedEvent,
    UserJoined,
    UserLeft,
)
from app.shared.utils.locks import KeyedLock
from app.shared.utils.logger import get_logger
from app.shared.utils.time import format_dt, utcnow

from . import permissions
from .entities import (
    Admin,
    AdminPermissions,
    Ban,
    Invitation,
    InvitationStatus,
    Listener,
    Room,
    RoomRole,
    RoomSettings,
    RoomStatus,
    Seat,
)
from .layout import build_seats, layout_for, rearrange, validate_mic_count, vip_mics_for

logger = get_logger(__name__)


class Broadcaster(Protocol):
    async def broadcast(self, room_id: str, message: dict, exclude=None, exclude_users=None) -> int: ...

    def room_members(self, room_id: str) -> List[dict]: ...

    async def evict_user(self, room_id: str, user_id: str, message: Optional[dict] = None): ...

    async def close_room(self, room_id: str, message: Optional[dict] = None): ...

    def update_role(self, room_id: str, user_id: str, role: str): ...


@dataclass
class JoinOutcome:
    role: RoomRole
    snapshot: Dict[str, Any]
    delta: Dict[str, Any]
    newly_joined: bool


@dataclass
class LeaveOutcome:
    was_present: bool
    was_on_mic: bool
    seat_number: Optional[int]
    participant_count: int


@dataclass
class MicCountChange:
    old_count: int
    new_count: int
    old_seats: List[dict]
    new_seats: List[dict]
    overflow_users: List[str] = field(default_factory=list)


class _Mutation:
    def __init__(self, room: Room):
        self.room = room
        self.dirty = True
        self.committed: List[Callable[[], Awaitable[Any]]] = []

    def unchanged(self):
        self.dirty = False

    def on_commit(self, callback: Callable[[], Awaitable[Any]]):
        """Run after the swap, still under the room lock"""
        self.committed.append(callback)


class RoomService:
    def __init__(self, repository, gateway: Broadcaster, event_bus: EventBus, settings):
        self.repository = repository
        self.gateway = gateway
        self.event_bus = event_bus
        self.settings = settings
        self._rooms: Dict[str, Room] = {}
        self._locks = KeyedLock()

    # ------------------------------------------------------------------ plumbing

    async def _store(self, coro):
        try:
            return await asyncio.wait_for(coro, self.settings.PERSISTENCE_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise PersistenceError("Room store timed out") from e
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Room store failed: {e}") from e

    async def _load(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = await self._store(self.repository.get(room_id))
            if room is None:
                raise RoomNotFound(f"Room {room_id} not found")
            self._rooms[room_id] = room
        return room

    @asynccontextmanager
    async def _mutate(self, room_id: str):
        async with self._locks.hold(room_id):
            working = copy.deepcopy(await self._load(room_id))
            mutation = _Mutation(working)
            yield mutation
            if mutation.dirty:
                try:
                    working.check_invariants()
                except InvariantViolation as e:
                    logger.error(f"Invariant violated in room {room_id}: {e}")
                    raise
                saved = await self._store(self.repository.save(working))
                self._rooms[room_id] = saved or working
            for callback in mutation.committed:
                await callback()

    async def _broadcast(self, *events: RoomEvent):
        for event in events:
            await self.gateway.broadcast(event.room_id, event.payload())

    async def get_room(self, room_id: str) -> Room:
        """Read-only view of the current aggregate"""
        return await self._load(room_id)

    def forget(self, room_id: str):
        self._rooms.pop(room_id, None)

    # ------------------------------------------------------------------ lifecycle

    async def create_room(
        self,
        owner: UserInfo,
        title: str,
        total_mics: Optional[int] = None,
        is_private: bool = False,
        description: Optional[str] = None,
        category: str = "general",
        tags: Optional[List[str]] = None,
        max_participants: Optional[int] = None,
    ) -> Room:
        total = validate_mic_count(self.settings.ROOM_DEFAULT_MIC_COUNT if total_mics is None else total_mics)
        title = (title or "").strip()
        if not title:
            raise ValidationError("Room title is required", code="invalid_title")
        limit = max_participants or self.settings.ROOM_MAX_PARTICIPANTS
        if not 2 <= limit <= self.settings.ROOM_MAX_PARTICIPANTS:
            raise ValidationError(
                f"max_participants must be between 2 and {self.settings.ROOM_MAX_PARTICIPANTS}",
                code="invalid_max_participants",
            )

        room = Room(
            room_id=str(uuid.uuid4()),
            owner_id=owner.id,
            title=title,
            description=description,
            category=category,
            tags=list(tags or []),
            total_mics=total,
            vip_mics=vip_mics_for(total),
            seats=build_seats(total),
            settings=RoomSettings(is_private=is_private, max_participants=limit),
        )
        room.check_invariants()
        saved = await self._store(self.repository.save(room))
        self._rooms[room.room_id] = saved or room
        logger.info(f"Room {room.room_id} created by {owner.id} with {total} mics")
        return self._rooms[room.room_id]

    async def end_room(self, room_id: str, actor_id: str) -> Room:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.require_owner(room, actor_id, "end the room")
            if room.is_ended:
                raise RoomEnded("Room already ended")
            room.status = RoomStatus.ENDED
            for seat in room.seats:
                seat.clear()
            room.listeners.clear()
            for user_id in room.waiting_queue.user_ids():
                room.waiting_queue.remove(user_id)
            room.touch()
            event = RoomEndedEvent(room_id=room_id, ended_by=actor_id)

        await self.event_bus.publish("room:ended", {"room_id": room_id, "ended_by": actor_id})
        await self.gateway.close_room(room_id, event.payload())
        ended = self._rooms[room_id]
        self.forget(room_id)
        logger.info(f"Room {room_id} ended by {actor_id}")
        return ended

    # ------------------------------------------------------------------ presence

    async def join_room(
        self,
        room_id: str,
        user: UserInfo,
        announce: bool = False,
        on_joined: Optional[Callable[[JoinOutcome], Awaitable[Any]]] = None,
    ) -> JoinOutcome:
        """
        Add the user to the listeners. The outcome carries both payload shapes:
        the full snapshot for the joiner and the delta for everyone else.

        on_joined runs after the join is stored and before the room lock is
        released, so a subscription made there misses no later mutation.
        """
        async with self._mutate(room_id) as m:
            room = m.room
            if room.is_ended:
                raise RoomEnded("Room has ended")
            permissions.ensure_not_banned(room, user.id)

            newly_joined = not room.is_present(user.id)
            if newly_joined:
                if room.settings.is_private and not self._may_enter_private(room, user.id):
                    raise Forbidden("This room is private", code="private_room")
                if room.participant_count() >= room.settings.max_participants:
                    raise ConflictError("Room is full", code="room_full")
                invitation = room.invitations.get(user.id)
                if invitation and invitation.is_usable():
                    invitation.status = InvitationStatus.ACCEPTED
                room.listeners[user.id] = Listener(user_id=user.id)
                room.stats.total_joins += 1
                room.update_peak_participants()
            else:
                listener = room.listeners.get(user.id)
                if listener:
                    listener.last_seen = utcnow()
            room.touch()

            role = permissions.role_of(room, user.id)
            snapshot = self._snapshot(room, user.id)
            delta = UserJoined(
                room_id=room_id,
                user_id=user.id,
                user=user.to_dict(),
                user_role=role.value,
                participant_count=room.participant_count(),
            )
            outcome = JoinOutcome(role=role, snapshot=snapshot, delta=delta.payload(), newly_joined=newly_joined)
            if on_joined is not None:
                m.on_commit(lambda: on_joined(outcome))

        if newly_joined:
            await self.event_bus.publish("room:user_joined", {"room_id": room_id, "user_id": user.id})
            if announce:
                await self._broadcast(delta)
        return outcome

    @staticmethod
    def _may_enter_private(room: Room, user_id: str) -> bool:
        if room.owner_id == user_id or user_id in room.admins:
            return True
        invitation = room.invitations.get(user_id)
        return invitation is not None and invitation.is_usable()

    async def leave_room(self, room_id: str, user_id: str, reason: str = "left") -> LeaveOutcome:
        events: List[RoomEvent] = []
        async with self._mutate(room_id) as m:
            room = m.room
            if not room.is_present(user_id) and user_id not in room.waiting_queue:
                m.unchanged()
                return LeaveOutcome(False, False, None, room.participant_count())
            outcome = self._remove_user(room, user_id)
            room.touch()
            events.append(UserLeft(
                room_id=room_id,
                user_id=user_id,
                reason=reason,
                was_on_mic=outcome.was_on_mic,
                seat_number=outcome.seat_number,
                participant_count=outcome.participant_count,
            ))
            if outcome.was_on_mic:
                events.append(self._mic_update(room, "user_left_mic", user_id, outcome.seat_number))

        await self._broadcast(*events)
        return outcome

    async def handle_disconnect(
        self, room_id: str, user: UserInfo, reason: str = "disconnected"
    ) -> Optional[LeaveOutcome]:
        """Gateway hook: a user's last socket in the room went away or moved to another room"""
        try:
            room = await self._load(room_id)
        except RoomNotFound:
            return None
        if room.is_ended or not room.is_present(user.id):
            return None
        return await self.leave_room(room_id, user.id, reason=reason)

    @staticmethod
    def _remove_user(room: Room, user_id: str) -> LeaveOutcome:
        seat = room.seat_of(user_id)
        seat_number = seat.seat_number if seat else None
        if seat:
            seat.clear()
        was_listener = room.listeners.pop(user_id, None) is not None
        room.waiting_queue.remove(user_id)
        return LeaveOutcome(
            was_present=seat is not None or was_listener,
            was_on_mic=seat is not None,
            seat_number=seat_number,
            participant_count=room.participant_count(),
        )

    # ------------------------------------------------------------------ seats

    async def change_mic_count(self, room_id: str, actor_id: str, new_count: int) -> MicCountChange:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            validate_mic_count(new_count)
            permissions.require_owner(room, actor_id, "change the mic count")
            if room.is_ended:
                raise RoomEnded("Room has ended")

            old_count = room.total_mics
            old_seats = [seat.to_dict() for seat in room.seats]
            privileged = {room.owner_id, *room.admins}
            result = rearrange(room.seats, new_count, privileged)

            room.total_mics = new_count
            room.vip_mics = vip_mics_for(new_count)
            room.seats = result.seats

            now = utcnow()
            overflow = []
            for index, displaced in enumerate(result.overflow):
                room.listeners.setdefault(displaced.user_id, Listener(user_id=displaced.user_id, joined_at=now))
                room.waiting_queue.add(
                    displaced.user_id,
                    priority=self.settings.DISPLACED_QUEUE_PRIORITY,
                    requested_at=now + timedelta(microseconds=index),
                )
            for displaced in result.overflow:
                overflow.append({
                    "user_id": displaced.user_id,
                    "from_seat": displaced.seat_number,
                    "queue_position": room.waiting_queue.position_of(displaced.user_id),
                })
            room.touch(now)

            change = MicCountChange(
                old_count=old_count,
                new_count=new_count,
                old_seats=old_seats,
                new_seats=[seat.to_dict() for seat in room.seats],
                overflow_users=result.overflow_users,
            )
            event = MicCountChanged(
                room_id=room_id,
                old_count=old_count,
                new_count=new_count,
                old_seats=change.old_seats,
                new_seats=change.new_seats,
                overflow_users=overflow,
                layout=layout_for(new_count).to_dict(),
                mic_stats=room.mic_stats(),
                waiting_queue=self._queue_view(room),
                changed_by=actor_id,
            )

        await self._broadcast(event)
        logger.info(
            f"Room {room_id} mic count {old_count} -> {new_count}, "
            f"{len(change.overflow_users)} users moved to the queue"
        )
        return change

    async def can_change_mic_count(self, room_id: str, actor_id: str, new_count: int) -> dict:
        room = await self._load(room_id)
        if room.owner_id != actor_id:
            return {"allowed": False, "reason": "Only the room owner can change the mic count"}
        try:
            validate_mic_count(new_count)
        except ValidationError as e:
            return {"allowed": False, "reason": e.message}
        if new_count == room.total_mics:
            return {"allowed": False, "reason": "Room already has this mic count"}
        moved = len(rearrange(room.seats, new_count, {room.owner_id, *room.admins}).overflow)
        if moved:
            return {"allowed": True, "warning": f"{moved} users will be moved to the waiting queue"}
        return {"allowed": True}

    async def join_seat(self, room_id: str, user_id: str, seat_number: int) -> dict:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, user_id)
            if room.is_ended:
                raise RoomEnded("Room has ended")
            if not room.is_present(user_id):
                raise Forbidden("Join the room before taking a seat", code="not_in_room")

            seat = room.find_seat(seat_number)
            if seat is None:
                raise SeatNotFound(f"Seat {seat_number} does not exist")
            if seat.user_id == user_id:
                raise AlreadySeated(f"Already on seat {seat_number}")
            if seat.is_occupied:
                raise SeatTaken(f"Seat {seat_number} is taken")
            if seat.is_locked and user_id != room.owner_id:
                raise SeatLocked(f"Seat {seat_number} is locked")
            if seat.is_vip and not permissions.is_privileged(room, user_id):
                raise VipSeatForbidden("VIP seats are reserved for the owner and admins")

            previous = room.seat_of(user_id)
            from_seat = previous.seat_number if previous else None
            if previous:
                previous.clear()
            self._occupy(room, seat, user_id)
            room.touch()
            event = self._mic_update(
                room,
                "user_moved_mic" if previous else "user_joined_mic",
                user_id,
                seat_number,
                from_seat=from_seat,
            )

        await self._broadcast(event)
        return {"seat_number": seat_number, "from_seat": from_seat}

    def _occupy(self, room: Room, seat: Seat, user_id: str):
        seat.user_id = user_id
        seat.joined_at = utcnow()
        seat.is_muted = room.settings.mic.auto_mute_new_speakers
        room.listeners.pop(user_id, None)
        room.waiting_queue.remove(user_id)

    async def leave_seat(self, room_id: str, user_id: str) -> bool:
        async with self._mutate(room_id) as m:
            room = m.room
            seat = room.seat_of(user_id)
            if seat is None:
                m.unchanged()
                return False
            seat_number = seat.seat_number
            seat.clear()
            room.listeners[user_id] = Listener(user_id=user_id)
            room.touch()
            event = self._mic_update(room, "user_left_mic", user_id, seat_number)

        await self._broadcast(event)
        return True

    async def set_seat_muted(self, room_id: str, actor_id: str, seat_number: int, muted: bool) -> Seat:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            seat = room.find_seat(seat_number)
            if seat is None:
                raise SeatNotFound(f"Seat {seat_number} does not exist")
            if not seat.is_occupied:
                raise ConflictError(f"Seat {seat_number} is empty", code="seat_empty")

            if seat.user_id == actor_id:
                allowed = room.settings.mic.allow_self_mute if muted else room.settings.mic.allow_self_unmute
                if not allowed and not permissions.has_permission(room, actor_id, "can_mute"):
                    raise Forbidden("Self mute is disabled in this room" if muted else "Self unmute is disabled in this room")
            else:
                permissions.require_permission(room, actor_id, "can_mute", "mute other speakers")
                if not permissions.outranks(room, actor_id, seat.user_id):
                    raise Forbidden("Cannot mute a user with an equal or higher role")

            seat.is_muted = muted
            room.touch()
            result = copy.copy(seat)
            event = self._mic_update(room, "seat_muted" if muted else "seat_unmuted", seat.user_id, seat_number)

        await self._broadcast(event)
        return result

    async def set_seat_locked(self, room_id: str, actor_id: str, seat_number: int, locked: bool) -> Seat:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            permissions.require_permission(room, actor_id, "can_manage_seats", "lock seats")
            seat = room.find_seat(seat_number)
            if seat is None:
                raise SeatNotFound(f"Seat {seat_number} does not exist")
            seat.is_locked = locked
            room.touch()
            result = copy.copy(seat)
            event = self._mic_update(room, "seat_locked" if locked else "seat_unlocked", seat.user_id, seat_number)

        await self._broadcast(event)
        return result

    # ------------------------------------------------------------------ queue

    async def add_to_queue(self, room_id: str, user_id: str, priority: int = 0) -> bool:
        """Idempotent: a second call for a queued user changes nothing"""
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, user_id)
            if not room.waiting_queue.add(user_id, priority=priority):
                m.unchanged()
                return False
            room.touch()
            event = QueueUpdated(room_id=room_id, waiting_queue=self._queue_view(room))

        await self._broadcast(event)
        return True

    async def request_queue(self, room_id: str, user_id: str) -> int:
        """User-facing queue request, returns the 1-based queue position"""
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, user_id)
            if room.is_ended:
                raise RoomEnded("Room has ended")
            if not room.is_present(user_id):
                raise Forbidden("Join the room before requesting a seat", code="not_in_room")
            if room.seat_of(user_id) is not None:
                raise AlreadySeated("Already on a seat")
            priority = 0
            if room.settings.mic.priority_queue and permissions.is_privileged(room, user_id):
                priority = self.settings.PRIVILEGED_QUEUE_PRIORITY
            if not room.waiting_queue.add(user_id, priority=priority):
                m.unchanged()
                return room.waiting_queue.position_of(user_id)
            room.touch()
            position = room.waiting_queue.position_of(user_id)
            event = QueueUpdated(room_id=room_id, waiting_queue=self._queue_view(room))

        await self._broadcast(event)
        return position

    async def remove_from_queue(self, room_id: str, user_id: str) -> bool:
        async with self._mutate(room_id) as m:
            room = m.room
            if not room.waiting_queue.remove(user_id):
                m.unchanged()
                return False
            room.touch()
            event = QueueUpdated(room_id=room_id, waiting_queue=self._queue_view(room))

        await self._broadcast(event)
        return True

    async def admit_from_queue(self, room_id: str, actor_id: str, seat_number: Optional[int] = None) -> Optional[dict]:
        """Seat the head of the queue; returns None when the queue is empty"""
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            permissions.require_permission(room, actor_id, "can_manage_seats", "admit users from the queue")
            head = room.waiting_queue.peek()
            if head is None:
                m.unchanged()
                return None

            privileged = permissions.is_privileged(room, head.user_id)
            if seat_number is not None:
                seat = room.find_seat(seat_number)
                if seat is None:
                    raise SeatNotFound(f"Seat {seat_number} does not exist")
                if seat.is_occupied:
                    raise SeatTaken(f"Seat {seat_number} is taken")
                if seat.is_locked:
                    raise SeatLocked(f"Seat {seat_number} is locked")
                if seat.is_vip and not privileged:
                    raise VipSeatForbidden("VIP seats are reserved for the owner and admins")
            else:
                seat = next(
                    (
                        s for s in room.seats
                        if not s.is_occupied and not s.is_locked and (privileged or not s.is_vip)
                    ),
                    None,
                )
                if seat is None:
                    raise ConflictError("No free seat", code="no_free_seat")

            room.waiting_queue.pop()
            self._occupy(room, seat, head.user_id)
            room.touch()
            events = [
                self._mic_update(room, "user_admitted", head.user_id, seat.seat_number),
                QueueUpdated(room_id=room_id, waiting_queue=self._queue_view(room)),
            ]
            admitted = {"user_id": head.user_id, "seat_number": seat.seat_number}

        await self._broadcast(*events)
        return admitted

    # ------------------------------------------------------------------ moderation

    async def ban(
        self,
        room_id: str,
        actor_id: str,
        target_id: str,
        reason: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> Ban:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            permissions.require_permission(room, actor_id, "can_ban", "ban users")
            if target_id == actor_id:
                raise Forbidden("Cannot ban yourself")
            if target_id == room.owner_id:
                raise Forbidden("The room owner cannot be banned")
            if target_id in room.admins and actor_id != room.owner_id:
                raise Forbidden("Only the room owner can ban an admin")
            if room.is_banned(target_id):
                raise AlreadyBanned("User is already banned")
            if duration_minutes is not None and duration_minutes <= 0:
                raise ValidationError("Ban duration must be positive", code="invalid_duration")

            now = utcnow()
            ban = Ban(
                user_id=target_id,
                banned_by=actor_id,
                reason=reason,
                banned_at=now,
                expires_at=now + timedelta(minutes=duration_minutes) if duration_minutes else None,
            )
            room.banned_users[target_id] = ban
            was_admin = room.admins.pop(target_id, None) is not None
            room.invitations.pop(target_id, None)
            outcome = self._remove_user(room, target_id)
            room.touch(now)

            banned_event = UserBannedEvent(
                room_id=room_id,
                user_id=target_id,
                banned_by=actor_id,
                reason=reason,
                expires_at=ban.expires_at,
            )
            events: List[RoomEvent] = [banned_event]
            if outcome.was_present:
                events.append(UserLeft(
                    room_id=room_id,
                    user_id=target_id,
                    reason="banned",
                    was_on_mic=outcome.was_on_mic,
                    seat_number=outcome.seat_number,
                    participant_count=outcome.participant_count,
                ))
            if outcome.was_on_mic:
                events.append(self._mic_update(room, "user_left_mic", target_id, outcome.seat_number))
            if was_admin:
                events.append(AdminsUpdated(room_id=room_id, admins=self._admins_view(room), changed_by=actor_id))
            result = copy.copy(ban)

        await self.gateway.evict_user(room_id, target_id, banned_event.payload())
        await self._broadcast(*events)
        logger.info(f"User {target_id} banned from room {room_id} by {actor_id}")
        return result

    async def unban(self, room_id: str, actor_id: str, target_id: str) -> bool:
        """Drops the ban record only; nothing the ban removed is restored"""
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            permissions.require_permission(room, actor_id, "can_ban", "unban users")
            if room.banned_users.pop(target_id, None) is None:
                m.unchanged()
                return False
            room.touch()
        logger.info(f"User {target_id} unbanned in room {room_id} by {actor_id}")
        return True

    async def is_banned(self, room_id: str, user_id: str, now: Optional[datetime] = None) -> bool:
        room = await self._load(room_id)
        return room.is_banned(user_id, now)

    async def kick(self, room_id: str, actor_id: str, target_id: str) -> LeaveOutcome:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            permissions.require_permission(room, actor_id, "can_kick", "kick users")
            if not permissions.outranks(room, actor_id, target_id):
                raise Forbidden("Cannot kick a user with an equal or higher role")
            if not room.is_present(target_id) and target_id not in room.waiting_queue:
                raise NotFound("User is not in the room", code="user_not_in_room")
            outcome = self._remove_user(room, target_id)
            room.touch()
            left = UserLeft(
                room_id=room_id,
                user_id=target_id,
                reason="kicked",
                was_on_mic=outcome.was_on_mic,
                seat_number=outcome.seat_number,
                participant_count=outcome.participant_count,
            )
            events: List[RoomEvent] = [left]
            if outcome.was_on_mic:
                events.append(self._mic_update(room, "user_left_mic", target_id, outcome.seat_number))

        await self.gateway.evict_user(room_id, target_id, left.payload())
        await self._broadcast(*events)
        logger.info(f"User {target_id} kicked from room {room_id} by {actor_id}")
        return outcome

    async def add_admin(
        self,
        room_id: str,
        actor_id: str,
        target_id: str,
        admin_permissions: Optional[dict] = None,
    ) -> Admin:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.require_owner(room, actor_id, "manage admins")
            if target_id == room.owner_id:
                raise ValidationError("The owner cannot be an admin", code="owner_not_admin")
            permissions.ensure_not_banned(room, target_id)
            flags = AdminPermissions.from_dict(admin_permissions) if admin_permissions else AdminPermissions()
            existing = room.admins.get(target_id)
            if existing:
                existing.permissions = flags
                admin = existing
            else:
                admin = Admin(user_id=target_id, permissions=flags, assigned_by=actor_id)
                room.admins[target_id] = admin
            room.touch()
            role = permissions.role_of(room, target_id)
            event = AdminsUpdated(room_id=room_id, admins=self._admins_view(room), changed_by=actor_id)
            result = copy.deepcopy(admin)

        self.gateway.update_role(room_id, target_id, role.value)
        await self._broadcast(event)
        return result

    async def remove_admin(self, room_id: str, actor_id: str, target_id: str) -> bool:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.require_owner(room, actor_id, "manage admins")
            if room.admins.pop(target_id, None) is None:
                m.unchanged()
                return False
            room.touch()
            role = permissions.role_of(room, target_id)
            event = AdminsUpdated(room_id=room_id, admins=self._admins_view(room), changed_by=actor_id)

        self.gateway.update_role(room_id, target_id, role.value)
        await self._broadcast(event)
        return True

    async def invite(self, room_id: str, actor_id: str, target_id: str) -> Invitation:
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, actor_id)
            permissions.require_permission(room, actor_id, "can_invite_users", "invite users")
            if room.is_banned(target_id):
                raise Forbidden("User is banned from this room", code="user_banned")
            now = utcnow()
            invitation = Invitation(
                user_id=target_id,
                invited_by=actor_id,
                invited_at=now,
                expires_at=now + timedelta(hours=self.settings.INVITATION_TTL_HOURS),
            )
            room.invitations[target_id] = invitation
            room.touch(now)
            result = copy.copy(invitation)
        return result

    async def record_message(self, room_id: str, user_id: str) -> RoomRole:
        """Chat gate: sender must be present, not banned, chat enabled. Returns the sender role."""
        async with self._mutate(room_id) as m:
            room = m.room
            permissions.ensure_not_banned(room, user_id)
            if room.is_ended:
                raise RoomEnded("Room has ended")
            if not room.is_present(user_id):
                raise Forbidden("Join the room before chatting", code="not_in_room")
            if not room.settings.chat.is_enabled:
                raise Forbidden("Chat is disabled in this room", code="chat_disabled")
            room.stats.total_messages += 1
            room.touch()
            return permissions.role_of(room, user_id)

    # ------------------------------------------------------------------ read views

    async def role_of(self, room_id: str, user_id: str) -> RoomRole:
        return permissions.role_of(await self._load(room_id), user_id)

    async def mic_stats(self, room_id: str) -> dict:
        return (await self._load(room_id)).mic_stats()

    async def participant_count(self, room_id: str) -> int:
        return (await self._load(room_id)).participant_count()

    async def layout(self, room_id: str) -> dict:
        return layout_for((await self._load(room_id)).total_mics).to_dict()

    async def snapshot(self, room_id: str, viewer_id: str) -> dict:
        return self._snapshot(await self._load(room_id), viewer_id)

    async def list_active_rooms(self, page: int = 1, limit: int = 20) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        rooms = await self._store(self.repository.list_active(offset=(page - 1) * limit, limit=limit))
        total = await self._store(self.repository.count_active())
        return {
            "rooms": [self._summary(room) for room in rooms],
            "total": total,
            "page": page,
            "limit": limit,
        }

    def _snapshot(self, room: Room, viewer_id: str) -> dict:
        return RoomJoined(
            room_id=room.room_id,
            room=room.to_document(),
            user_role=permissions.role_of(room, viewer_id).value,
            mic_stats=room.mic_stats(),
            layout=layout_for(room.total_mics).to_dict(),
            waiting_queue=self._queue_view(room),
            connected_users=self.gateway.room_members(room.room_id),
        ).payload()

    def _summary(self, room: Room) -> dict:
        live = self._rooms.get(room.room_id, room)
        return {
            "room_id": live.room_id,
            "title": live.title,
            "description": live.description,
            "category": live.category,
            "owner_id": live.owner_id,
            "total_mics": live.total_mics,
            "participant_count": live.participant_count(),
            "mic_stats": live.mic_stats(),
            "last_active_at": format_dt(live.last_active_at),
        }

    @staticmethod
    def _queue_view(room: Room) -> List[dict]:
        return [
            {
                "user_id": entry.user_id,
                "priority": entry.priority,
                "requested_at": format_dt(entry.requested_at),
                "position": index + 1,
            }
            for index, entry in enumerate(room.waiting_queue)
        ]

    @staticmethod
    def _admins_view(room: Room) -> List[dict]:
        return [admin.to_dict() for admin in room.admins.values()]

    @staticmethod
    def _mic_update(
        room: Room,
        action: str,
        user_id: Optional[str],
        seat_number: Optional[int],
        from_seat: Optional[int] = None,
    ) -> MicUpdate:
        return MicUpdate(
            room_id=room.room_id,
            action=action,
            user_id=user_id,
            seat_number=seat_number,
            from_seat=from_seat,
            seats=[seat.to_dict() for seat in room.seats],
            mic_stats=room.mic_stats(),
        )
