from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.shared.utils.time import utcnow


class RoomEvent(BaseModel):
    """Room-scoped realtime event; every event is timestamped"""
    event: str
    room_id: str
    timestamp: datetime = Field(default_factory=utcnow)

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ---- presence ----

class RoomJoined(RoomEvent):
    """Full snapshot, sent to the joining client only"""
    event: Literal["room_joined"] = "room_joined"
    room: Dict[str, Any]
    user_role: str
    mic_stats: Dict[str, Any]
    layout: Dict[str, Any]
    waiting_queue: List[Dict[str, Any]]
    connected_users: List[Dict[str, Any]] = Field(default_factory=list)
    active_media: Optional[Dict[str, Any]] = None


class UserJoined(RoomEvent):
    event: Literal["user_joined"] = "user_joined"
    user_id: str
    user: Dict[str, Any]
    user_role: str
    participant_count: int


class UserLeft(RoomEvent):
    event: Literal["user_left"] = "user_left"
    user_id: str
    reason: str = "left"  # left, disconnected, kicked, banned
    was_on_mic: bool = False
    seat_number: Optional[int] = None
    participant_count: int = 0


class UsersUpdate(RoomEvent):
    event: Literal["users_update"] = "users_update"
    connected_users: List[Dict[str, Any]]


class RoomEndedEvent(RoomEvent):
    event: Literal["room_ended"] = "room_ended"
    ended_by: str


# ---- seats ----

class MicUpdate(RoomEvent):
    event: Literal["mic_update"] = "mic_update"
    action: str  # user_joined_mic, user_left_mic, seat_muted, seat_locked, ...
    user_id: Optional[str] = None
    seat_number: Optional[int] = None
    from_seat: Optional[int] = None
    seats: List[Dict[str, Any]]
    mic_stats: Dict[str, Any]


class MicCountChanged(RoomEvent):
    event: Literal["mic_count_changed"] = "mic_count_changed"
    old_count: int
    new_count: int
    old_seats: List[Dict[str, Any]]
    new_seats: List[Dict[str, Any]]
    overflow_users: List[Dict[str, Any]]
    layout: Dict[str, Any]
    mic_stats: Dict[str, Any]
    waiting_queue: List[Dict[str, Any]]
    changed_by: str


class QueueUpdated(RoomEvent):
    event: Literal["queue_updated"] = "queue_updated"
    waiting_queue: List[Dict[str, Any]]


class UserBannedEvent(RoomEvent):
    event: Literal["user_banned"] = "user_banned"
    user_id: str
    banned_by: str
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None


class AdminsUpdated(RoomEvent):
    event: Literal["admins_updated"] = "admins_updated"
    admins: List[Dict[str, Any]]
    changed_by: str


# ---- chat ----

class NewMessage(RoomEvent):
    event: Literal["new_message"] = "new_message"
    sender: Dict[str, Any]
    sender_role: str
    text: str
    was_filtered: bool = False
    reply_to: Optional[str] = None


# ---- media ----

class MediaAdded(RoomEvent):
    event: Literal["media_added"] = "media_added"
    content: Dict[str, Any]
    added_by: str


class MediaStarted(RoomEvent):
    event: Literal["media_started"] = "media_started"
    content_id: str
    content: Dict[str, Any]
    started_by: str


class MediaPaused(RoomEvent):
    event: Literal["media_paused"] = "media_paused"
    content_id: str
    paused_by: str
    current_position: float


class MediaStopped(RoomEvent):
    event: Literal["media_stopped"] = "media_stopped"
    content_ids: List[str] = Field(default_factory=list)
    stopped_by: Optional[str] = None


class MediaSeeked(RoomEvent):
    event: Literal["media_seeked"] = "media_seeked"
    content_id: str
    position: float
    seeked_by: str


class MediaVolumeChanged(RoomEvent):
    event: Literal["media_volume_changed"] = "media_volume_changed"
    content_id: str
    volume: int
    changed_by: str


class MediaSpeedChanged(RoomEvent):
    event: Literal["media_speed_changed"] = "media_speed_changed"
    content_id: str
    playback_speed: float
    current_position: float
    changed_by: str


class MediaSync(RoomEvent):
    event: Literal["media_sync"] = "media_sync"
    content_id: str
    current_position: float
    is_playing: bool
    volume: int
    playback_speed: float


class MediaError(RoomEvent):
    event: Literal["media_error"] = "media_error"
    content_id: str
    code: str
    message: Optional[str] = None
    reported_by: str


class MediaDeleted(RoomEvent):
    event: Literal["media_deleted"] = "media_deleted"
    content_id: str
    deleted_by: str
