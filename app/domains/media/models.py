# app/domains/media/models.py
from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.database.mixins import TimestampMixin
from app.shared.models.base import Base


class MediaContentRecord(Base, TimestampMixin):
    __tablename__ = "media_contents"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    room_id: Mapped[str] = mapped_column(String, index=True)
    type: Mapped[str] = mapped_column(String(16))  # youtube, audio_file, playlist
    title: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(16), default="stopped", index=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    playback: Mapped[dict] = mapped_column(JSON, default=dict)
    controls: Mapped[dict] = mapped_column(JSON, default=dict)
    stats: Mapped[dict] = mapped_column(JSON, default=dict)
    error_info: Mapped[dict] = mapped_column(JSON, nullable=True)
    added_by: Mapped[str] = mapped_column(String, index=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
