# app/domains/media/synchronizer.py
"""
Per-room media playback coordination.

Each room has at most one current item and at most one resync task. The
task is owned here: starting playback replaces any previous task for the
room, pausing, stopping, erroring or deleting cancels it. A tick recomputes
the drift-corrected position, re-persists it and broadcasts media_sync.
"""
import asyncio
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.domains.rooms import permissions as room_permissions
from app.domains.rooms.entities import Room
from app.shared.exceptions import (
    ContentNotFound,
    Forbidden,
    InvalidTransition,
    InvariantViolation,
    PersistenceError,
    RoomEnded,
    ValidationError,
)
from app.shared.schemas.events import (
    MediaAdded,
    MediaDeleted,
    MediaError,
    MediaPaused,
    MediaSeeked,
    MediaSpeedChanged,
    MediaStarted,
    MediaStopped,
    MediaSync,
    MediaVolumeChanged,
    RoomEvent,
)
from app.shared.utils.locks import KeyedLock
from app.shared.utils.logger import get_logger
from app.shared.utils.time import now_ms, utcnow

from . import playback
from .entities import (
    AudioData,
    ContentStatus,
    ContentType,
    Controls,
    ErrorInfo,
    MediaContent,
    PlaybackState,
    PlaylistData,
    PlaylistItem,
    YoutubeData,
)

logger = get_logger(__name__)

_CURRENT = (ContentStatus.ACTIVE, ContentStatus.PAUSED)


def can_control(room: Room, content: MediaContent, user_id: str, action: str) -> bool:
    """
    Owner always; the content's controller always; when the content is locked
    nobody else. Otherwise admins with can_manage_music, then per-user grants.
    """
    if room.owner_id == user_id or content.controls.controller_id == user_id:
        return True
    if content.controls.is_locked:
        return False
    if user_id in room.admins and room_permissions.has_permission(room, user_id, "can_manage_music"):
        return True
    return content.controls.grants(user_id, action)


def _random_suffix() -> str:
    return uuid.uuid4().hex[:9]


class MediaSynchronizer:
    def __init__(self, repository, rooms, gateway, settings):
        self.repository = repository
        self.rooms = rooms
        self.gateway = gateway
        self.settings = settings
        self._locks = KeyedLock()
        self._sync_tasks: Dict[str, asyncio.Task] = {}
        self._sync_content: Dict[str, str] = {}

    # ------------------------------------------------------------------ plumbing

    async def _store(self, coro):
        try:
            return await asyncio.wait_for(coro, self.settings.PERSISTENCE_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise PersistenceError("Media store timed out") from e
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Media store failed: {e}") from e

    async def _content(self, room_id: str, content_id: str) -> MediaContent:
        content = await self._store(self.repository.get(content_id))
        if content is None or content.room_id != room_id:
            raise ContentNotFound(f"Content {content_id} not found in room {room_id}")
        return content

    async def _current_items(self, room_id: str) -> List[MediaContent]:
        return await self._store(self.repository.list_by_room(room_id, statuses=_CURRENT))

    async def _room_for(self, room_id: str, actor_id: str) -> Room:
        room = await self.rooms.get_room(room_id)
        if room.is_ended:
            raise RoomEnded("Room has ended")
        room_permissions.ensure_not_banned(room, actor_id)
        return room

    @staticmethod
    def _require_control(room: Room, content: MediaContent, actor_id: str, action: str):
        if not can_control(room, content, actor_id, action):
            raise Forbidden(f"No permission to {action} this content", code=f"media_{action}_forbidden")

    @staticmethod
    def _require_member(room: Room, actor_id: str):
        if actor_id != room.owner_id and not room.is_present(actor_id):
            raise Forbidden("Join the room first", code="not_in_room")

    async def _broadcast(self, *events: RoomEvent):
        for event in events:
            await self.gateway.broadcast(event.room_id, event.payload())

    def content_view(self, content: MediaContent, now: Optional[datetime] = None) -> dict:
        view = content.to_document()
        view["playback"]["effective_position"] = playback.effective_position(content.playback, now)
        return view

    # ------------------------------------------------------------------ sync tasks

    def is_syncing(self, room_id: str) -> bool:
        task = self._sync_tasks.get(room_id)
        return task is not None and not task.done()

    def _start_sync(self, room_id: str, content_id: str):
        self._cancel_sync(room_id)
        task = asyncio.get_running_loop().create_task(
            self._sync_loop(room_id, content_id), name=f"media-sync-{room_id}"
        )
        self._sync_tasks[room_id] = task
        self._sync_content[room_id] = content_id
        logger.info(f"Media sync started for room {room_id}, content {content_id}")

    def _cancel_sync(self, room_id: str) -> bool:
        task = self._sync_tasks.pop(room_id, None)
        self._sync_content.pop(room_id, None)
        if task is None or task.done():
            return False
        if task is not asyncio.current_task():
            task.cancel()
        logger.info(f"Media sync stopped for room {room_id}")
        return True

    async def _sync_loop(self, room_id: str, content_id: str):
        me = asyncio.current_task()
        try:
            while True:
                await asyncio.sleep(self.settings.MEDIA_SYNC_INTERVAL)
                try:
                    event = await self._sync_tick(room_id, content_id)
                except PersistenceError as e:
                    logger.warning(f"Skipping media sync tick for room {room_id}: {e}")
                    continue
                if event is None:
                    break
                if self._sync_tasks.get(room_id) is not me:
                    break
                await self.gateway.broadcast(room_id, event.payload())
        except InvariantViolation as e:
            logger.error(f"Media sync for room {room_id} terminated: {e}")
        except Exception as e:
            logger.error(f"Media sync for room {room_id} crashed: {e!r}")
        finally:
            if self._sync_tasks.get(room_id) is me:
                del self._sync_tasks[room_id]
                self._sync_content.pop(room_id, None)

    async def _sync_tick(self, room_id: str, content_id: str) -> Optional[MediaSync]:
        async with self._locks.hold(room_id):
            content = await self._store(self.repository.get(content_id))
            if content is None:
                raise InvariantViolation(f"Active content {content_id} disappeared from room {room_id}")
            if content.status != ContentStatus.ACTIVE or not content.playback.is_playing:
                return None
            playback.rebase(content.playback)
            await self._store(self.repository.save(content))
            return MediaSync(
                room_id=room_id,
                content_id=content_id,
                current_position=content.playback.current_position,
                is_playing=True,
                volume=content.playback.volume,
                playback_speed=content.playback.playback_speed,
            )

    async def shutdown(self):
        tasks = list(self._sync_tasks.values())
        for room_id in list(self._sync_tasks):
            self._cancel_sync(room_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Media synchronizer stopped, {len(tasks)} sync tasks cancelled")

    # ------------------------------------------------------------------ content creation

    async def _add(self, room_id: str, actor_id: str, title: str, details) -> MediaContent:
        room = await self._room_for(room_id, actor_id)
        self._require_member(room, actor_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required", code="invalid_title")
        if details.kind == ContentType.YOUTUBE:
            content_id = f"youtube_{details.video_id}_{now_ms()}"
        elif details.kind == ContentType.AUDIO_FILE:
            content_id = f"audio_{now_ms()}_{_random_suffix()}"
        else:
            content_id = f"playlist_{now_ms()}_{_random_suffix()}"

        content = MediaContent(
            content_id=content_id,
            room_id=room_id,
            title=title[:200],
            details=details,
            added_by=actor_id,
            controls=Controls(controller_id=actor_id),
        )
        await self._store(self.repository.save(content))
        await self._broadcast(MediaAdded(room_id=room_id, content=self.content_view(content), added_by=actor_id))
        logger.info(f"{content.type.value} content {content_id} added to room {room_id} by {actor_id}")
        return content

    async def add_youtube_content(self, room_id: str, actor_id: str, video_id: str, info: Optional[dict] = None) -> MediaContent:
        info = info or {}
        if not video_id:
            raise ValidationError("video_id is required", code="invalid_video_id")
        details = YoutubeData(
            video_id=video_id,
            duration=info.get("duration"),
            thumbnail=info.get("thumbnail"),
            channel_title=info.get("channel_title"),
        )
        return await self._add(room_id, actor_id, info.get("title") or video_id, details)

    async def add_audio_content(self, room_id: str, actor_id: str, file_info: dict) -> MediaContent:
        """``file_info`` comes from the upload collaborator"""
        if not file_info.get("file_url") or not file_info.get("file_name"):
            raise ValidationError("Audio file url and name are required", code="invalid_audio")
        duration = file_info.get("duration")
        if duration is None or duration <= 0:
            raise ValidationError("Audio duration must be positive", code="invalid_audio")
        details = AudioData(
            file_name=file_info["file_name"],
            file_url=file_info["file_url"],
            duration=float(duration),
            bitrate=file_info.get("bitrate"),
            format=file_info.get("format"),
            file_size=file_info.get("file_size"),
        )
        return await self._add(room_id, actor_id, file_info.get("title") or file_info["file_name"], details)

    async def create_playlist(
        self,
        room_id: str,
        actor_id: str,
        title: str,
        items: List[dict],
        shuffle: bool = False,
        repeat: str = "none",
    ) -> MediaContent:
        if not items:
            raise ValidationError("Playlist needs at least one item", code="empty_playlist")
        if repeat not in ("none", "one", "all"):
            raise ValidationError("repeat must be none, one or all", code="invalid_repeat")
        try:
            parsed = tuple(PlaylistItem.from_dict(item) for item in items)
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Bad playlist item: {e}", code="invalid_playlist_item") from e
        if any(item.type == ContentType.PLAYLIST for item in parsed):
            raise ValidationError("Playlists cannot be nested", code="invalid_playlist_item")
        details = PlaylistData(items=parsed, shuffle=shuffle, repeat=repeat)
        return await self._add(room_id, actor_id, title, details)

    # ------------------------------------------------------------------ playback

    def _force_stop(self, content: MediaContent, now: datetime):
        if content.status == ContentStatus.LOADING or content.is_current:
            playback.transition(content, ContentStatus.STOPPED)
        content.playback.is_playing = False
        content.playback.current_position = 0.0
        content.playback.last_updated = now

    async def _stop_all_locked(self, room_id: str, exclude: Optional[str] = None) -> List[str]:
        now = utcnow()
        stopped = []
        for other in await self._current_items(room_id):
            if other.content_id == exclude:
                continue
            self._force_stop(other, now)
            await self._store(self.repository.save(other))
            stopped.append(other.content_id)
        if exclude is None or self._sync_content.get(room_id) != exclude:
            self._cancel_sync(room_id)
        return stopped

    async def start(
        self,
        room_id: str,
        actor_id: str,
        content_id: str,
        start_position: Optional[float] = None,
    ) -> MediaContent:
        """
        Make ``content_id`` the room's active item. Anything else current in the
        room is stopped first. Without a position a paused item resumes where it
        was frozen, anything else starts from zero.
        """
        events: List[RoomEvent] = []
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            self._require_control(room, content, actor_id, "play")
            if content.status == ContentStatus.ERROR:
                raise InvalidTransition("Content is in error state, reset it first")

            if start_position is None:
                position = content.playback.current_position if content.status == ContentStatus.PAUSED else 0.0
            else:
                position = playback.validate_position(start_position, content.duration)

            stopped = await self._stop_all_locked(room_id, exclude=content_id)
            if stopped:
                events.append(MediaStopped(room_id=room_id, content_ids=stopped, stopped_by=actor_id))

            if content.status == ContentStatus.STOPPED:
                playback.transition(content, ContentStatus.LOADING)
            if content.status != ContentStatus.ACTIVE:
                playback.transition(content, ContentStatus.ACTIVE)
            content.error = None
            content.playback.is_playing = True
            content.playback.current_position = position
            content.playback.last_updated = utcnow()
            content.stats.total_plays += 1
            await self._store(self.repository.save(content))
            self._start_sync(room_id, content_id)
            events.append(MediaStarted(
                room_id=room_id,
                content_id=content_id,
                content=self.content_view(content),
                started_by=actor_id,
            ))

        await self._broadcast(*events)
        logger.info(f"Content {content_id} started in room {room_id} by {actor_id} at {position:.1f}s")
        return content

    async def pause(self, room_id: str, actor_id: str, content_id: str) -> MediaContent:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            self._require_control(room, content, actor_id, "pause")
            if content.status != ContentStatus.ACTIVE:
                raise InvalidTransition(f"Content is {content.status.value}, not playing")
            playback.rebase(content.playback)
            content.playback.is_playing = False
            playback.transition(content, ContentStatus.PAUSED)
            await self._store(self.repository.save(content))
            self._cancel_sync(room_id)
            event = MediaPaused(
                room_id=room_id,
                content_id=content_id,
                paused_by=actor_id,
                current_position=content.playback.current_position,
            )

        await self._broadcast(event)
        logger.info(f"Content {content_id} paused in room {room_id} at {event.current_position:.1f}s")
        return content

    async def stop_all(self, room_id: str, stopped_by: Optional[str] = None) -> List[str]:
        async with self._locks.hold(room_id):
            stopped = await self._stop_all_locked(room_id)
        if stopped:
            await self._broadcast(MediaStopped(room_id=room_id, content_ids=stopped, stopped_by=stopped_by))
            logger.info(f"Stopped {len(stopped)} items in room {room_id}")
        return stopped

    async def stop_content(self, room_id: str, actor_id: str) -> List[str]:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            current = await self._current_items(room_id)
            if not current:
                raise ContentNotFound("Nothing is playing in this room", code="no_active_content")
            for content in current:
                self._require_control(room, content, actor_id, "pause")
            stopped = await self._stop_all_locked(room_id)

        await self._broadcast(MediaStopped(room_id=room_id, content_ids=stopped, stopped_by=actor_id))
        logger.info(f"Playback stopped in room {room_id} by {actor_id}")
        return stopped

    async def seek(self, room_id: str, actor_id: str, content_id: str, position: float) -> MediaContent:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            self._require_control(room, content, actor_id, "seek")
            if not content.is_current:
                raise InvalidTransition(f"Cannot seek {content.status.value} content")
            content.playback.current_position = playback.validate_position(position, content.duration)
            content.playback.last_updated = utcnow()
            await self._store(self.repository.save(content))
            event = MediaSeeked(
                room_id=room_id,
                content_id=content_id,
                position=content.playback.current_position,
                seeked_by=actor_id,
            )

        await self._broadcast(event)
        return content

    async def set_volume(self, room_id: str, actor_id: str, content_id: str, volume: int) -> MediaContent:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            self._require_control(room, content, actor_id, "volume")
            content.playback.volume = playback.clamp_volume(volume)
            await self._store(self.repository.save(content))
            event = MediaVolumeChanged(
                room_id=room_id,
                content_id=content_id,
                volume=content.playback.volume,
                changed_by=actor_id,
            )

        await self._broadcast(event)
        return content

    async def set_playback_speed(self, room_id: str, actor_id: str, content_id: str, speed: float) -> MediaContent:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            self._require_control(room, content, actor_id, "play")
            speed = playback.validate_speed(speed)
            playback.rebase(content.playback)
            content.playback.playback_speed = speed
            await self._store(self.repository.save(content))
            event = MediaSpeedChanged(
                room_id=room_id,
                content_id=content_id,
                playback_speed=speed,
                current_position=content.playback.current_position,
                changed_by=actor_id,
            )

        await self._broadcast(event)
        return content

    async def sync_position(
        self,
        room_id: str,
        actor_id: str,
        content_id: str,
        position: float,
        reported_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> MediaContent:
        """A client reports its local position; reconcile it to server time"""
        now = now or utcnow()
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            self._require_control(room, content, actor_id, "seek")
            if not content.is_current:
                raise InvalidTransition(f"Cannot sync {content.status.value} content")
            reported = PlaybackState(
                is_playing=content.playback.is_playing,
                current_position=playback.validate_position(position),
                playback_speed=content.playback.playback_speed,
                last_updated=reported_at or now,
            )
            content.playback.current_position = playback.effective_position(reported, now)
            content.playback.last_updated = now
            await self._store(self.repository.save(content))
            event = MediaSync(
                room_id=room_id,
                content_id=content_id,
                current_position=content.playback.current_position,
                is_playing=content.playback.is_playing,
                volume=content.playback.volume,
                playback_speed=content.playback.playback_speed,
            )

        await self._broadcast(event)
        return content

    async def add_rating(self, room_id: str, actor_id: str, content_id: str, rating: float) -> MediaContent:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            self._require_member(room, actor_id)
            content = await self._content(room_id, content_id)
            playback.add_rating(content.stats, rating)
            await self._store(self.repository.save(content))
        return content

    async def report_error(
        self,
        room_id: str,
        actor_id: str,
        content_id: str,
        code: str,
        message: Optional[str] = None,
    ) -> MediaContent:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            self._require_member(room, actor_id)
            content = await self._content(room_id, content_id)
            if content.status == ContentStatus.ERROR:
                raise InvalidTransition("Content is already in error state")
            playback.rebase(content.playback)
            content.playback.is_playing = False
            playback.transition(content, ContentStatus.ERROR)
            content.error = ErrorInfo(code=code or "unknown", message=message, reported_by=actor_id)
            await self._store(self.repository.save(content))
            if self._sync_content.get(room_id) == content_id:
                self._cancel_sync(room_id)
            event = MediaError(
                room_id=room_id,
                content_id=content_id,
                code=content.error.code,
                message=message,
                reported_by=actor_id,
            )

        await self._broadcast(event)
        logger.warning(f"Content {content_id} in room {room_id} reported broken: {code}")
        return content

    async def reset_content(self, room_id: str, actor_id: str, content_id: str) -> MediaContent:
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            self._require_control(room, content, actor_id, "play")
            playback.transition(content, ContentStatus.STOPPED)
            content.error = None
            content.playback.current_position = 0.0
            content.playback.last_updated = utcnow()
            await self._store(self.repository.save(content))
        return content

    async def delete_content(self, room_id: str, actor_id: str, content_id: str) -> bool:
        events: List[RoomEvent] = []
        async with self._locks.hold(room_id):
            room = await self._room_for(room_id, actor_id)
            content = await self._content(room_id, content_id)
            allowed = (
                content.added_by == actor_id
                or room.owner_id == actor_id
                or (actor_id in room.admins and room_permissions.has_permission(room, actor_id, "can_manage_music"))
            )
            if not allowed:
                raise Forbidden("No permission to delete this content", code="media_delete_forbidden")
            if content.is_current:
                self._force_stop(content, utcnow())
                events.append(MediaStopped(room_id=room_id, content_ids=[content_id], stopped_by=actor_id))
            if self._sync_content.get(room_id) == content_id:
                self._cancel_sync(room_id)
            await self._store(self.repository.delete(content_id))
            events.append(MediaDeleted(room_id=room_id, content_id=content_id, deleted_by=actor_id))

        await self._broadcast(*events)
        logger.info(f"Content {content_id} deleted from room {room_id} by {actor_id}")
        return True

    async def record_listener(self, room_id: str) -> Optional[MediaContent]:
        async with self._locks.hold(room_id):
            for content in await self._current_items(room_id):
                if content.status == ContentStatus.ACTIVE:
                    content.stats.total_listeners += 1
                    await self._store(self.repository.save(content))
                    return content
        return None

    async def end_room_media(self, room_id: str) -> int:
        """Room ended: stop the sync task and drop every item"""
        async with self._locks.hold(room_id):
            self._cancel_sync(room_id)
            removed = await self._store(self.repository.delete_by_room(room_id))
        logger.info(f"Removed {removed} media items of ended room {room_id}")
        return removed

    # ------------------------------------------------------------------ read views

    async def get_active_content(self, room_id: str) -> Optional[MediaContent]:
        current = await self._current_items(room_id)
        for content in current:
            if content.status == ContentStatus.ACTIVE:
                return content
        return current[0] if current else None

    async def get_content(self, room_id: str, content_id: str) -> MediaContent:
        return await self._content(room_id, content_id)

    async def list_content(self, room_id: str, page: int = 1, limit: int = 20) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        items = await self._store(self.repository.list_by_room(room_id, offset=(page - 1) * limit, limit=limit))
        total = await self._store(self.repository.count_by_room(room_id))
        return {
            "items": [self.content_view(c) for c in items],
            "total": total,
            "page": page,
            "limit": limit,
            "pages": (total + limit - 1) // limit,
        }

    async def media_stats(self, room_id: str) -> dict:
        items = await self._store(self.repository.list_by_room(room_id))
        by_type = {t.value: 0 for t in ContentType}
        rated = 0
        rating_sum = 0.0
        for content in items:
            by_type[content.type.value] += 1
            rated += content.stats.rating_count
            rating_sum += content.stats.average_rating * content.stats.rating_count
        return {
            "total_items": len(items),
            "by_type": by_type,
            "total_plays": sum(c.stats.total_plays for c in items),
            "total_listeners": sum(c.stats.total_listeners for c in items),
            "average_rating": rating_sum / rated if rated else 0.0,
            "rating_count": rated,
        }
