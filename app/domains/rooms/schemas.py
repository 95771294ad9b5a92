from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CreateRoomRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    total_mics: Optional[int] = None
    is_private: bool = False
    description: Optional[str] = Field(default=None, max_length=500)
    category: str = "general"
    tags: List[str] = Field(default_factory=list)
    max_participants: Optional[int] = None


class ChangeMicCountRequest(BaseModel):
    new_count: int


class SeatFlagRequest(BaseModel):
    value: bool = True


class AdmitRequest(BaseModel):
    seat_number: Optional[int] = None


class BanRequest(BaseModel):
    user_id: str
    reason: Optional[str] = Field(default=None, max_length=200)
    duration_minutes: Optional[int] = None  # None = навсегда


class TargetUserRequest(BaseModel):
    user_id: str


class AddAdminRequest(BaseModel):
    user_id: str
    permissions: Optional[Dict[str, bool]] = None


class MicCountChangeResponse(BaseModel):
    old_count: int
    new_count: int
    old_seats: List[dict]
    new_seats: List[dict]
    overflow_users: List[str]
