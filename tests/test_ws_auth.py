import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.core.config import Settings
from app.core.container import build_services
from app.main import create_app
from app.shared.utils.security import create_access_token

from tests.fakes import InMemoryMediaRepository, InMemoryRoomRepository


@pytest.fixture
def client():
    def services_factory():
        return build_services(
            settings=Settings(),
            room_repository=InMemoryRoomRepository(),
            media_repository=InMemoryMediaRepository(),
        )

    with TestClient(create_app(services_factory)) as c:
        yield c


def test_ws_requires_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/rooms/ws"):
            pass
    assert exc.value.code == 4401


def test_ws_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/rooms/ws?token=garbage"):
            pass
    assert exc.value.code == 4401


def test_ws_valid_token_joins_room(client):
    owner_token = create_access_token({"sub": "owner"})
    r = client.post(
        "/api/rooms",
        json={"title": "Late night", "total_mics": 6},
        headers={"Authorization": f"Bearer {owner_token}"},
    )
    room_id = r.json()["room_id"]

    token = create_access_token({"sub": "u1", "name": "Listener"})
    with client.websocket_connect(f"/api/rooms/ws?token={token}") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["user"]["id"] == "u1"

        ws.send_json({"type": "join_room", "room_id": room_id})
        snapshot = ws.receive_json()
        assert snapshot["event"] == "room_joined"
        assert snapshot["user_role"] == "listener"
        assert snapshot["active_media"] is None
        assert ws.receive_json()["event"] == "users_update"

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_json({"type": "join_seat", "seat_number": 1})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["error"]["code"] == "vip_seat_forbidden"
