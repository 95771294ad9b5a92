from app.core.config import settings
from app.tasks import cleanup


def test_cleanup_task_no_event_loop_crash(monkeypatch):
    calls = []

    async def fake_end_inactive_rooms(hours):
        calls.append(hours)
        return ["room-1"]

    monkeypatch.setattr(cleanup, "end_inactive_rooms", fake_end_inactive_rooms)

    assert cleanup.cleanup_inactive_rooms_task(2) == ["room-1"]
    cleanup.cleanup_inactive_rooms_task()
    assert calls == [2, settings.ROOM_INACTIVITY_HOURS]


def test_cleanup_is_scheduled():
    from app.core.celery import celery_app

    schedule = celery_app.conf.beat_schedule["cleanup-inactive-rooms"]
    assert schedule["task"] == "app.tasks.cleanup.cleanup_inactive_rooms_task"
