from typing import List, Optional

from pydantic import BaseModel, Field


class AddYoutubeRequest(BaseModel):
    video_id: str = Field(..., min_length=1, max_length=64)
    title: Optional[str] = None
    duration: Optional[float] = None
    thumbnail: Optional[str] = None
    channel_title: Optional[str] = None


class AddAudioRequest(BaseModel):
    """Metadata produced by the upload service for an uploaded file"""
    file_name: str
    file_url: str
    duration: float
    bitrate: Optional[int] = None
    format: Optional[str] = None
    file_size: Optional[int] = None
    title: Optional[str] = None


class PlaylistItemRequest(BaseModel):
    type: str  # youtube, audio_file
    title: str = ""
    ref: str
    duration: Optional[float] = None


class CreatePlaylistRequest(BaseModel):
    title: str
    items: List[PlaylistItemRequest]
    shuffle: bool = False
    repeat: str = "none"


class StartRequest(BaseModel):
    position: Optional[float] = None


class SeekRequest(BaseModel):
    position: float


class VolumeRequest(BaseModel):
    volume: int


class SpeedRequest(BaseModel):
    speed: float


class RatingRequest(BaseModel):
    rating: float


class ErrorReportRequest(BaseModel):
    code: str = "playback_failed"
    message: Optional[str] = None
