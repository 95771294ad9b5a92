# app/shared/exceptions.py
"""
Domain error taxonomy shared by the room and media domains.

Every error carries a stable ``code`` and a ``kind`` so callers can tell
"you are not allowed" (forbidden) from "not possible right now" (conflict)
from "this doesn't exist" (not_found). The HTTP and websocket layers only
look at ``kind``.
"""
from typing import Optional


class RoomsError(Exception):
    kind = "error"
    code = "error"

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"kind": self.kind, "code": self.code, "message": self.message}


class ValidationError(RoomsError):
    kind = "validation"
    code = "invalid"


class InvalidMicCount(ValidationError):
    code = "invalid_mic_count"


class InvalidRating(ValidationError):
    code = "invalid_rating"


class InvalidPlaybackValue(ValidationError):
    code = "invalid_playback_value"


class PermissionDenied(RoomsError):
    kind = "forbidden"
    code = "forbidden"


class Forbidden(PermissionDenied):
    code = "forbidden"


class UserBanned(PermissionDenied):
    code = "user_banned"


class VipSeatForbidden(PermissionDenied):
    code = "vip_seat_forbidden"


class NotFound(RoomsError):
    kind = "not_found"
    code = "not_found"


class RoomNotFound(NotFound):
    code = "room_not_found"


class ContentNotFound(NotFound):
    code = "content_not_found"


class SeatNotFound(NotFound):
    code = "seat_not_found"


class ConflictError(RoomsError):
    kind = "conflict"
    code = "conflict"


class SeatTaken(ConflictError):
    code = "seat_taken"


class SeatLocked(ConflictError):
    code = "seat_locked"


class AlreadyBanned(ConflictError):
    code = "already_banned"


class AlreadySeated(ConflictError):
    code = "already_seated"


class InvalidTransition(ConflictError):
    code = "invalid_transition"


class RoomEnded(ConflictError):
    code = "room_ended"


class InvariantViolation(RoomsError):
    kind = "invariant"
    code = "invariant_violation"


class PersistenceError(RoomsError):
    kind = "unavailable"
    code = "persistence_error"
