import asyncio
from datetime import timedelta

import pytest

from app.domains.media.entities import ContentStatus
from app.shared.exceptions import (
    ContentNotFound,
    Forbidden,
    InvalidPlaybackValue,
    InvalidRating,
    InvalidTransition,
)
from app.shared.utils.time import utcnow

from tests.helpers import make_user, wait_for


async def add_track(media, room_id, name="a.mp3", actor="owner", duration=180):
    return await media.add_audio_content(
        room_id, actor, {"file_url": f"https://cdn.example.com/{name}", "file_name": name, "duration": duration}
    )


async def test_added_content_is_stopped(media, room, gateway):
    content = await media.add_youtube_content(room.room_id, "owner", "dQw4w9WgXcQ", {"title": "Clip", "duration": 212})

    assert content.status == ContentStatus.STOPPED
    assert content.content_id.startswith("youtube_dQw4w9WgXcQ_")
    assert gateway.events("media_added")[0]["content"]["details"]["embed_url"].endswith("dQw4w9WgXcQ")


async def test_starting_one_item_stops_the_other(media, room, media_repo, gateway):
    a = await add_track(media, room.room_id, "a.mp3")
    b = await add_track(media, room.room_id, "b.mp3")

    await media.start(room.room_id, "owner", a.content_id)
    gateway.clear()
    await media.start(room.room_id, "owner", b.content_id)

    assert media_repo.items[a.content_id].status == ContentStatus.STOPPED
    assert media_repo.items[b.content_id].status == ContentStatus.ACTIVE
    assert media_repo.items[b.content_id].stats.total_plays == 1
    names = gateway.names()
    assert names.index("media_stopped") < names.index("media_started")
    assert gateway.events("media_stopped")[0]["content_ids"] == [a.content_id]
    active = await media.get_active_content(room.room_id)
    assert active.content_id == b.content_id


async def test_sync_ticks_while_playing_and_stop_on_pause(media, room, gateway, media_repo):
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id)

    assert media.is_syncing(room.room_id)
    assert await wait_for(lambda: len(gateway.events("media_sync")) >= 2)
    assert gateway.events("media_sync")[-1]["content_id"] == track.content_id

    paused = await media.pause(room.room_id, "owner", track.content_id)
    assert not media.is_syncing(room.room_id)
    assert paused.status == ContentStatus.PAUSED
    assert media_repo.items[track.content_id].playback.is_playing is False

    ticks = len(gateway.events("media_sync"))
    await asyncio.sleep(0.1)
    assert len(gateway.events("media_sync")) == ticks


async def test_new_start_supersedes_sync_task(media, room):
    a = await add_track(media, room.room_id, "a.mp3")
    b = await add_track(media, room.room_id, "b.mp3")

    await media.start(room.room_id, "owner", a.content_id)
    first = media._sync_tasks[room.room_id]
    await media.start(room.room_id, "owner", b.content_id)
    second = media._sync_tasks[room.room_id]

    assert first is not second
    assert await wait_for(first.done)
    assert not second.done()


async def test_resume_keeps_paused_position(media, room, media_repo):
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id, start_position=30)
    await media.pause(room.room_id, "owner", track.content_id)

    resumed = await media.start(room.room_id, "owner", track.content_id)

    assert resumed.status == ContentStatus.ACTIVE
    assert resumed.playback.current_position >= 30
    assert resumed.stats.total_plays == 2


async def test_control_permissions(media, rooms, room, media_repo):
    room_id = room.room_id
    for user_id in ("bob", "alice", "carol"):
        await rooms.join_room(room_id, make_user(user_id))
    await rooms.add_admin(room_id, "owner", "alice", {"can_manage_music": True})
    await rooms.add_admin(room_id, "owner", "carol")
    track = await add_track(media, room_id)

    with pytest.raises(Forbidden):
        await media.start(room_id, "bob", track.content_id)
    with pytest.raises(Forbidden):
        await media.start(room_id, "carol", track.content_id)
    await media.start(room_id, "alice", track.content_id)

    media_repo.items[track.content_id].controls.is_locked = True
    with pytest.raises(Forbidden):
        await media.pause(room_id, "alice", track.content_id)
    await media.pause(room_id, "owner", track.content_id)

    media_repo.items[track.content_id].controls.is_locked = False
    media_repo.items[track.content_id].controls.allowed_controllers["bob"] = ["play"]
    await media.start(room_id, "bob", track.content_id)
    with pytest.raises(Forbidden):
        await media.seek(room_id, "bob", track.content_id, 5)


async def test_error_and_reset(media, room, rooms):
    await rooms.join_room(room.room_id, make_user("bob"))
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id)

    broken = await media.report_error(room.room_id, "bob", track.content_id, "decode_failed")
    assert broken.status == ContentStatus.ERROR
    assert broken.error.reported_by == "bob"
    assert not media.is_syncing(room.room_id)

    with pytest.raises(InvalidTransition):
        await media.start(room.room_id, "owner", track.content_id)

    reset = await media.reset_content(room.room_id, "owner", track.content_id)
    assert reset.status == ContentStatus.STOPPED and reset.error is None
    await media.start(room.room_id, "owner", track.content_id)


async def test_seek_volume_speed(media, room, media_repo):
    track = await add_track(media, room.room_id, duration=120)

    with pytest.raises(InvalidTransition):
        await media.seek(room.room_id, "owner", track.content_id, 10)

    await media.start(room.room_id, "owner", track.content_id)
    seeked = await media.seek(room.room_id, "owner", track.content_id, 60)
    assert seeked.playback.current_position == 60
    with pytest.raises(InvalidPlaybackValue):
        await media.seek(room.room_id, "owner", track.content_id, 500)

    assert (await media.set_volume(room.room_id, "owner", track.content_id, 150)).playback.volume == 100
    with pytest.raises(InvalidPlaybackValue):
        await media.set_playback_speed(room.room_id, "owner", track.content_id, 3.0)
    faster = await media.set_playback_speed(room.room_id, "owner", track.content_id, 1.5)
    assert media_repo.items[track.content_id].playback.playback_speed == 1.5
    assert faster.playback.current_position >= 60


async def test_sync_position_corrects_for_latency(media, room):
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id)
    t0 = utcnow()

    synced = await media.sync_position(
        room.room_id, "owner", track.content_id, 10, reported_at=t0, now=t0 + timedelta(seconds=5)
    )

    assert synced.playback.current_position == pytest.approx(15.0)


async def test_rating(media, room, rooms):
    await rooms.join_room(room.room_id, make_user("bob"))
    track = await add_track(media, room.room_id)

    await media.add_rating(room.room_id, "owner", track.content_id, 4)
    rated = await media.add_rating(room.room_id, "bob", track.content_id, 2)
    assert rated.stats.average_rating == pytest.approx(3.0)

    with pytest.raises(InvalidRating):
        await media.add_rating(room.room_id, "bob", track.content_id, 0)
    with pytest.raises(Forbidden):
        await media.add_rating(room.room_id, "stranger", track.content_id, 5)

    stats = await media.media_stats(room.room_id)
    assert stats["rating_count"] == 2 and stats["average_rating"] == pytest.approx(3.0)


async def test_delete_playing_content(media, room, rooms, media_repo, gateway):
    await rooms.join_room(room.room_id, make_user("bob"))
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id)

    with pytest.raises(Forbidden):
        await media.delete_content(room.room_id, "bob", track.content_id)

    assert await media.delete_content(room.room_id, "owner", track.content_id)
    assert track.content_id not in media_repo.items
    assert not media.is_syncing(room.room_id)
    assert gateway.names()[-2:] == ["media_stopped", "media_deleted"]
    with pytest.raises(ContentNotFound):
        await media.get_content(room.room_id, track.content_id)


async def test_stop_content(media, room, media_repo):
    with pytest.raises(ContentNotFound):
        await media.stop_content(room.room_id, "owner")

    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id, start_position=20)

    assert await media.stop_content(room.room_id, "owner") == [track.content_id]
    stored = media_repo.items[track.content_id]
    assert stored.status == ContentStatus.STOPPED
    assert stored.playback.current_position == 0.0
    assert not media.is_syncing(room.room_id)


async def test_sync_skips_transient_store_failure(media, room, media_repo, gateway):
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id)
    media_repo.fail_saves = 1

    assert await wait_for(lambda: media_repo.fail_saves == 0)
    assert media.is_syncing(room.room_id)
    ticks = len(gateway.events("media_sync"))
    assert await wait_for(lambda: len(gateway.events("media_sync")) > ticks)


async def test_sync_terminates_when_content_vanishes(media, room, media_repo):
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id)

    del media_repo.items[track.content_id]

    assert await wait_for(lambda: not media.is_syncing(room.room_id))


async def test_room_events_reach_media(services, room, media_repo):
    rooms, media = services.rooms, services.media
    track = await add_track(media, room.room_id)
    await media.start(room.room_id, "owner", track.content_id)

    await rooms.join_room(room.room_id, make_user("bob"))
    assert media_repo.items[track.content_id].stats.total_listeners == 1

    await rooms.end_room(room.room_id, "owner")
    assert not media.is_syncing(room.room_id)
    assert await media_repo.count_by_room(room.room_id) == 0


async def test_list_content_pages(media, room):
    for index in range(3):
        await add_track(media, room.room_id, f"{index}.mp3")

    page = await media.list_content(room.room_id, page=2, limit=2)

    assert page["total"] == 3 and page["pages"] == 2
    assert len(page["items"]) == 1
    assert "effective_position" in page["items"][0]["playback"]
