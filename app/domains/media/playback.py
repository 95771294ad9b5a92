# app/domains/media/playback.py
"""
Pure playback rules: the content state machine, drift-corrected position
and the rating running mean. No I/O here.

    stopped -> loading -> active <-> paused
    any -> error, error -> stopped (manual reset only)
"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from app.shared.exceptions import InvalidPlaybackValue, InvalidRating, InvalidTransition
from app.shared.utils.time import utcnow

from .entities import ContentStatus, MediaContent, MediaStats, PlaybackState

MIN_SPEED = 0.25
MAX_SPEED = 2.0
MIN_RATING = 1
MAX_RATING = 5

TRANSITIONS: Dict[ContentStatus, FrozenSet[ContentStatus]] = {
    ContentStatus.STOPPED: frozenset({ContentStatus.LOADING, ContentStatus.ERROR}),
    ContentStatus.LOADING: frozenset({ContentStatus.ACTIVE, ContentStatus.STOPPED, ContentStatus.ERROR}),
    ContentStatus.ACTIVE: frozenset({ContentStatus.PAUSED, ContentStatus.STOPPED, ContentStatus.ERROR}),
    ContentStatus.PAUSED: frozenset({ContentStatus.ACTIVE, ContentStatus.STOPPED, ContentStatus.ERROR}),
    ContentStatus.ERROR: frozenset({ContentStatus.STOPPED}),
}


def can_transition(current: ContentStatus, target: ContentStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(content: MediaContent, target: ContentStatus):
    if not can_transition(content.status, target):
        raise InvalidTransition(
            f"Content {content.content_id} cannot go from {content.status.value} to {target.value}"
        )
    content.status = target


def effective_position(playback: PlaybackState, now: Optional[datetime] = None) -> float:
    """stored + elapsed * speed while playing, the stored value otherwise"""
    if not playback.is_playing:
        return playback.current_position
    elapsed = ((now or utcnow()) - playback.last_updated).total_seconds()
    return playback.current_position + max(elapsed, 0.0) * playback.playback_speed


def rebase(playback: PlaybackState, now: Optional[datetime] = None) -> float:
    """Fold elapsed time into the stored position and restart the clock"""
    now = now or utcnow()
    playback.current_position = effective_position(playback, now)
    playback.last_updated = now
    return playback.current_position


def _number(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidPlaybackValue(f"{name} must be a number")
    return float(value)


def validate_position(position, duration: Optional[float] = None) -> float:
    position = _number(position, "Position")
    if position < 0:
        raise InvalidPlaybackValue("Position cannot be negative")
    if duration is not None and duration > 0 and position > duration:
        raise InvalidPlaybackValue(f"Position {position} is past the end ({duration})")
    return position


def clamp_volume(volume) -> int:
    return int(min(max(_number(volume, "Volume"), 0), 100))


def validate_speed(speed) -> float:
    speed = _number(speed, "Playback speed")
    if not MIN_SPEED <= speed <= MAX_SPEED:
        raise InvalidPlaybackValue(f"Playback speed must be between {MIN_SPEED} and {MAX_SPEED}")
    return speed


def add_rating(stats: MediaStats, rating) -> MediaStats:
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        raise InvalidRating("Rating must be a number")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidRating(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    total = stats.average_rating * stats.rating_count + rating
    stats.rating_count += 1
    stats.average_rating = total / stats.rating_count
    return stats
