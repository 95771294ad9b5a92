import asyncio

from starlette.websockets import WebSocketState

from app.domains.auth.entities import UserInfo


def make_user(user_id: str) -> UserInfo:
    return UserInfo(id=user_id, display_name=f"User {user_id}")


async def wait_for(predicate, timeout: float = 1.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


class FakeWebSocket:
    """Enough of starlette's WebSocket for the gateway: accept, send_json, close"""

    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.sent = []
        self.delay = delay
        self.fail = fail
        self.accepted = False
        self.client_state = WebSocketState.CONNECTED

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def close(self, code: int = 1000):
        self.client_state = WebSocketState.DISCONNECTED

    def events(self, name: str):
        return [m for m in self.sent if m.get("event") == name]

    def frames(self, frame_type: str):
        return [m for m in self.sent if m.get("type") == frame_type]
