# app/domains/rooms/models.py
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.database.mixins import TimestampMixin
from app.shared.models.base import Base


class RoomRecord(Base, TimestampMixin):
    __tablename__ = "rooms_rooms"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), default="general", index=True)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(16), default="active", index=True)  # active, paused, ended
    total_mics: Mapped[int] = mapped_column(Integer, default=6)
    state: Mapped[dict] = mapped_column(JSON, default=dict)  # seats, admins, bans, queue, listeners, ...
    last_active_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
