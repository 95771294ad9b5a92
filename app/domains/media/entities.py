# app/domains/media/entities.py
"""
Shared media content. Type-specific details are a closed set of tagged
variants (youtube, audio_file, playlist) instead of a free-form metadata map.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Union

from app.shared.utils.time import format_dt, parse_dt, utcnow


class ContentType(str, Enum):
    YOUTUBE = "youtube"
    AUDIO_FILE = "audio_file"
    PLAYLIST = "playlist"


class ContentStatus(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


CONTROL_ACTIONS = ("play", "pause", "seek", "volume", "skip", "add_to_queue")


@dataclass(frozen=True)
class YoutubeData:
    kind: ClassVar[ContentType] = ContentType.YOUTUBE

    video_id: str
    duration: Optional[float] = None
    thumbnail: Optional[str] = None
    channel_title: Optional[str] = None

    @property
    def embed_url(self) -> str:
        return f"https://www.youtube.com/embed/{self.video_id}"

    def to_dict(self) -> dict:
        return {
            "video_id": self.video_id,
            "duration": self.duration,
            "thumbnail": self.thumbnail,
            "channel_title": self.channel_title,
            "embed_url": self.embed_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "YoutubeData":
        return cls(
            video_id=data["video_id"],
            duration=data.get("duration"),
            thumbnail=data.get("thumbnail"),
            channel_title=data.get("channel_title"),
        )


@dataclass(frozen=True)
class AudioData:
    """Output of the upload collaborator: {duration, bitrate, format} plus the file itself"""
    kind: ClassVar[ContentType] = ContentType.AUDIO_FILE

    file_name: str
    file_url: str
    duration: float
    bitrate: Optional[int] = None
    format: Optional[str] = None
    file_size: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "file_url": self.file_url,
            "duration": self.duration,
            "bitrate": self.bitrate,
            "format": self.format,
            "file_size": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AudioData":
        return cls(
            file_name=data["file_name"],
            file_url=data["file_url"],
            duration=float(data.get("duration") or 0.0),
            bitrate=data.get("bitrate"),
            format=data.get("format"),
            file_size=data.get("file_size"),
        )


@dataclass(frozen=True)
class PlaylistItem:
    type: ContentType
    title: str
    ref: str  # youtube video id or audio url
    duration: Optional[float] = None

    def to_dict(self) -> dict:
        return {"type": self.type.value, "title": self.title, "ref": self.ref, "duration": self.duration}

    @classmethod
    def from_dict(cls, data: dict) -> "PlaylistItem":
        return cls(
            type=ContentType(data["type"]),
            title=data.get("title") or "",
            ref=data["ref"],
            duration=data.get("duration"),
        )


@dataclass(frozen=True)
class PlaylistData:
    kind: ClassVar[ContentType] = ContentType.PLAYLIST

    items: tuple = ()
    current_index: int = 0
    shuffle: bool = False
    repeat: str = "none"  # none, one, all

    @property
    def duration(self) -> Optional[float]:
        if any(item.duration is None for item in self.items):
            return None
        return float(sum(item.duration for item in self.items))

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "current_index": self.current_index,
            "shuffle": self.shuffle,
            "repeat": self.repeat,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlaylistData":
        return cls(
            items=tuple(PlaylistItem.from_dict(i) for i in data.get("items", [])),
            current_index=int(data.get("current_index", 0)),
            shuffle=bool(data.get("shuffle", False)),
            repeat=data.get("repeat") or "none",
        )


ContentDetails = Union[YoutubeData, AudioData, PlaylistData]

_DETAILS_BY_TYPE = {
    ContentType.YOUTUBE: YoutubeData,
    ContentType.AUDIO_FILE: AudioData,
    ContentType.PLAYLIST: PlaylistData,
}


@dataclass
class PlaybackState:
    is_playing: bool = False
    current_position: float = 0.0  # секунды
    volume: int = 50
    playback_speed: float = 1.0
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "is_playing": self.is_playing,
            "current_position": self.current_position,
            "volume": self.volume,
            "playback_speed": self.playback_speed,
            "last_updated": format_dt(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PlaybackState":
        data = data or {}
        return cls(
            is_playing=bool(data.get("is_playing", False)),
            current_position=float(data.get("current_position", 0.0)),
            volume=int(data.get("volume", 50)),
            playback_speed=float(data.get("playback_speed", 1.0)),
            last_updated=parse_dt(data.get("last_updated")) or utcnow(),
        )


@dataclass
class Controls:
    controller_id: str
    allowed_controllers: Dict[str, List[str]] = field(default_factory=dict)  # user_id -> actions
    is_locked: bool = False

    def grants(self, user_id: str, action: str) -> bool:
        return action in self.allowed_controllers.get(user_id, ())

    def to_dict(self) -> dict:
        return {
            "controller_id": self.controller_id,
            "allowed_controllers": {k: list(v) for k, v in self.allowed_controllers.items()},
            "is_locked": self.is_locked,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Controls":
        return cls(
            controller_id=data["controller_id"],
            allowed_controllers={k: list(v) for k, v in (data.get("allowed_controllers") or {}).items()},
            is_locked=bool(data.get("is_locked", False)),
        )


@dataclass
class MediaStats:
    total_plays: int = 0
    total_listeners: int = 0
    average_rating: float = 0.0
    rating_count: int = 0

    def to_dict(self) -> dict:
        return {
            "total_plays": self.total_plays,
            "total_listeners": self.total_listeners,
            "average_rating": self.average_rating,
            "rating_count": self.rating_count,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "MediaStats":
        data = data or {}
        return cls(
            total_plays=int(data.get("total_plays", 0)),
            total_listeners=int(data.get("total_listeners", 0)),
            average_rating=float(data.get("average_rating", 0.0)),
            rating_count=int(data.get("rating_count", 0)),
        )


@dataclass
class ErrorInfo:
    code: str
    message: Optional[str] = None
    reported_by: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "reported_by": self.reported_by,
            "occurred_at": format_dt(self.occurred_at),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ErrorInfo"]:
        if not data:
            return None
        return cls(
            code=data["code"],
            message=data.get("message"),
            reported_by=data.get("reported_by"),
            occurred_at=parse_dt(data.get("occurred_at")) or utcnow(),
        )


@dataclass
class MediaContent:
    content_id: str
    room_id: str
    title: str
    details: ContentDetails
    added_by: str
    controls: Controls
    status: ContentStatus = ContentStatus.STOPPED
    playback: PlaybackState = field(default_factory=PlaybackState)
    stats: MediaStats = field(default_factory=MediaStats)
    error: Optional[ErrorInfo] = None
    added_at: datetime = field(default_factory=utcnow)

    @property
    def type(self) -> ContentType:
        return self.details.kind

    @property
    def duration(self) -> Optional[float]:
        return self.details.duration

    @property
    def is_current(self) -> bool:
        """Active or paused: the room's current item"""
        return self.status in (ContentStatus.ACTIVE, ContentStatus.PAUSED)

    def to_document(self) -> dict:
        return {
            "content_id": self.content_id,
            "room_id": self.room_id,
            "type": self.type.value,
            "title": self.title,
            "status": self.status.value,
            "details": self.details.to_dict(),
            "playback": self.playback.to_dict(),
            "controls": self.controls.to_dict(),
            "stats": self.stats.to_dict(),
            "error": self.error.to_dict() if self.error else None,
            "added_by": self.added_by,
            "added_at": format_dt(self.added_at),
        }

    @classmethod
    def from_document(cls, data: dict) -> "MediaContent":
        details_cls = _DETAILS_BY_TYPE[ContentType(data["type"])]
        return cls(
            content_id=data["content_id"],
            room_id=data["room_id"],
            title=data.get("title") or "",
            status=ContentStatus(data.get("status", "stopped")),
            details=details_cls.from_dict(data.get("details") or {}),
            playback=PlaybackState.from_dict(data.get("playback")),
            controls=Controls.from_dict(data.get("controls") or {"controller_id": data.get("added_by", "")}),
            stats=MediaStats.from_dict(data.get("stats")),
            error=ErrorInfo.from_dict(data.get("error")),
            added_by=data.get("added_by") or "",
            added_at=parse_dt(data.get("added_at")) or utcnow(),
        )
