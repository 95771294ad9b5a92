import pytest
from fastapi.testclient import TestClient

from app.core import celery, database, redis
from app.core.config import Settings
from app.core.container import build_services
from app.main import create_app
from app.shared.utils.security import create_access_token

from tests.fakes import InMemoryMediaRepository, InMemoryRoomRepository


def auth(user_id):
    token = create_access_token({"sub": user_id, "name": user_id.title()})
    return {"Authorization": f"Bearer {token}"}


def up():
    async def check():
        return True
    return check


def down():
    async def check():
        return False
    return check


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(database, "check_connection", up())
    monkeypatch.setattr(redis, "check_connection", up())
    monkeypatch.setattr(celery, "check_connection", up())

    def services_factory():
        return build_services(
            settings=Settings(MEDIA_SYNC_INTERVAL=0.05),
            room_repository=InMemoryRoomRepository(),
            media_repository=InMemoryMediaRepository(),
        )

    with TestClient(create_app(services_factory)) as c:
        yield c


def create_room(client, **extra):
    body = {"title": "Morning show", "total_mics": 12, **extra}
    r = client.post("/api/rooms", json=body, headers=auth("owner"))
    assert r.status_code == 200, r.text
    return r.json()["room_id"]


def test_health_shape(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert set(body["services"]) == {"database", "redis", "rabbitmq"}
    assert body["connections"]["total_connections"] == 0


def test_health_degraded(client, monkeypatch):
    monkeypatch.setattr(redis, "check_connection", down())
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "degraded"
    assert r.json()["services"]["redis"] is False


def test_requires_auth(client):
    assert client.post("/api/rooms", json={"title": "x"}).status_code == 401


def test_invalid_mic_count_is_422(client):
    r = client.post("/api/rooms", json={"title": "x", "total_mics": 7}, headers=auth("owner"))
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "invalid_mic_count"


def test_unknown_room_is_404(client):
    r = client.get("/api/rooms/nope/mic-stats")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "room_not_found"


def test_mic_count_change_flow(client):
    room_id = create_room(client)
    for user_id, seat in (("owner", 1), ("bob", 5), ("carol", 9)):
        assert client.post(f"/api/rooms/{room_id}/join", headers=auth(user_id)).status_code == 200
        r = client.post(f"/api/rooms/{room_id}/seats/{seat}/join", headers=auth(user_id))
        assert r.status_code == 200, r.text

    r = client.put(f"/api/rooms/{room_id}/mic-count", json={"new_count": 2}, headers=auth("bob"))
    assert r.status_code == 403
    assert r.json()["error"]["kind"] == "forbidden"
    assert client.get(f"/api/rooms/{room_id}/mic-stats").json()["total"] == 12

    check = client.get(f"/api/rooms/{room_id}/mic-count/check", params={"new_count": 2}, headers=auth("owner"))
    assert check.json()["allowed"] is True

    r = client.put(f"/api/rooms/{room_id}/mic-count", json={"new_count": 2}, headers=auth("owner"))
    assert r.status_code == 200
    body = r.json()
    assert body["old_count"] == 12 and body["new_count"] == 2
    assert body["overflow_users"] == ["carol"]

    assert client.get(f"/api/rooms/{room_id}/layout").json()["arrangement"] == "horizontal"
    stats = client.get(f"/api/rooms/{room_id}/mic-stats").json()
    assert stats["occupied"] == 2 and stats["waiting_queue"] == 1


def test_seat_conflict_is_409(client):
    room_id = create_room(client)
    for user_id in ("bob", "carol"):
        client.post(f"/api/rooms/{room_id}/join", headers=auth(user_id))
    client.post(f"/api/rooms/{room_id}/seats/4/join", headers=auth("bob"))

    r = client.post(f"/api/rooms/{room_id}/seats/4/join", headers=auth("carol"))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "seat_taken"


def test_ban_endpoint(client):
    room_id = create_room(client)
    client.post(f"/api/rooms/{room_id}/join", headers=auth("bob"))

    r = client.post(f"/api/rooms/{room_id}/bans", json={"user_id": "bob"}, headers=auth("owner"))
    assert r.status_code == 200
    assert client.get(f"/api/rooms/{room_id}/bans/bob").json()["is_banned"] is True
    assert client.post(f"/api/rooms/{room_id}/join", headers=auth("bob")).status_code == 403


def test_list_rooms(client):
    create_room(client)
    create_room(client, is_private=True)
    body = client.get("/api/rooms").json()
    assert body["total"] == 1


def test_media_flow(client):
    room_id = create_room(client)
    r = client.post(
        f"/api/media/{room_id}/youtube",
        json={"video_id": "abc123", "title": "Clip", "duration": 90},
        headers=auth("owner"),
    )
    assert r.status_code == 200, r.text
    content_id = r.json()["content_id"]

    r = client.post(f"/api/media/{room_id}/{content_id}/start", json={"position": 3}, headers=auth("owner"))
    assert r.status_code == 200
    assert r.json()["status"] == "active"

    active = client.get(f"/api/media/{room_id}/active").json()["content"]
    assert active["content_id"] == content_id
    assert active["playback"]["effective_position"] >= 3

    r = client.post(f"/api/media/{room_id}/{content_id}/speed", json={"speed": 4}, headers=auth("owner"))
    assert r.status_code == 422

    r = client.post(f"/api/media/{room_id}/{content_id}/pause", headers=auth("owner"))
    assert r.status_code == 200
    r = client.post(f"/api/media/{room_id}/{content_id}/pause", headers=auth("owner"))
    assert r.status_code == 409
