from datetime import timedelta

import pytest

from app.domains.media import playback
from app.domains.media.entities import (
    ContentStatus,
    Controls,
    MediaContent,
    MediaStats,
    PlaybackState,
    YoutubeData,
)
from app.shared.exceptions import InvalidPlaybackValue, InvalidRating, InvalidTransition
from app.shared.utils.time import utcnow


def test_position_advances_only_while_playing():
    t0 = utcnow()
    state = PlaybackState(is_playing=True, current_position=10.0, last_updated=t0)

    assert playback.effective_position(state, t0 + timedelta(seconds=5)) == pytest.approx(15.0)

    state.playback_speed = 2.0
    assert playback.effective_position(state, t0 + timedelta(seconds=5)) == pytest.approx(20.0)

    state.is_playing = False
    assert playback.effective_position(state, t0 + timedelta(seconds=5)) == 10.0


def test_clock_skew_never_rewinds():
    t0 = utcnow()
    state = PlaybackState(is_playing=True, current_position=10.0, last_updated=t0)
    assert playback.effective_position(state, t0 - timedelta(seconds=3)) == 10.0


def test_rebase_folds_elapsed_time():
    t0 = utcnow()
    state = PlaybackState(is_playing=True, current_position=1.0, last_updated=t0)
    now = t0 + timedelta(seconds=4)

    assert playback.rebase(state, now) == pytest.approx(5.0)
    assert state.last_updated == now
    assert playback.effective_position(state, now) == pytest.approx(5.0)


def test_rating_running_mean():
    stats = MediaStats()
    playback.add_rating(stats, 4)
    playback.add_rating(stats, 2)
    assert stats.average_rating == pytest.approx(3.0)
    assert stats.rating_count == 2


@pytest.mark.parametrize("bad", [0, 6, -1, 5.5, True, "4", None])
def test_rating_out_of_range(bad):
    stats = MediaStats()
    with pytest.raises(InvalidRating):
        playback.add_rating(stats, bad)
    assert stats.rating_count == 0


def test_state_machine():
    content = MediaContent(
        content_id="c1",
        room_id="r1",
        title="Song",
        details=YoutubeData(video_id="abc"),
        added_by="owner",
        controls=Controls(controller_id="owner"),
    )
    assert content.status == ContentStatus.STOPPED

    with pytest.raises(InvalidTransition):
        playback.transition(content, ContentStatus.ACTIVE)

    for target in (ContentStatus.LOADING, ContentStatus.ACTIVE, ContentStatus.PAUSED, ContentStatus.ACTIVE):
        playback.transition(content, target)
    playback.transition(content, ContentStatus.ERROR)

    # only a manual reset leaves the error state
    assert not playback.can_transition(ContentStatus.ERROR, ContentStatus.ACTIVE)
    playback.transition(content, ContentStatus.STOPPED)


def test_playback_value_validation():
    assert playback.clamp_volume(150) == 100
    assert playback.clamp_volume(-3) == 0
    assert playback.validate_speed(0.25) == 0.25
    assert playback.validate_position(12, duration=30) == 12.0

    with pytest.raises(InvalidPlaybackValue):
        playback.validate_speed(2.5)
    with pytest.raises(InvalidPlaybackValue):
        playback.validate_position(-1)
    with pytest.raises(InvalidPlaybackValue):
        playback.validate_position(31, duration=30)
    with pytest.raises(InvalidPlaybackValue):
        playback.clamp_volume("loud")
