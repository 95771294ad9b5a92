# app/core/websocket_manager.py
"""
Realtime broadcast gateway: connected clients, room subscriptions, fan-out.

The gateway owns presence (who is connected to which room) but never mutates
room state. Disconnects are announced to the room and then handed to the
registered disconnect listeners, which delegate to the room aggregate.
"""
import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.core.event_bus import EventBus
from app.domains.auth.entities import UserInfo
from app.shared.exceptions import RoomsError
from app.shared.utils.logger import get_logger
from app.shared.utils.time import utcnow

logger = get_logger(__name__)

DisconnectListener = Callable[[str, UserInfo], Awaitable[Any]]


class ConnectionInfo:
    """Information about a WebSocket connection"""

    def __init__(self, websocket: WebSocket, user: UserInfo):
        self.websocket = websocket
        self.user = user
        self.room_id: Optional[str] = None
        self.role: Optional[str] = None
        self.connected_at = utcnow()
        self.last_ping = utcnow()
        self.last_pong = utcnow()
        self.is_alive = True
        self.reconnect_token: str = str(uuid.uuid4())

    @property
    def user_id(self) -> str:
        return self.user.id

    def update_activity(self):
        """Update last activity timestamp"""
        self.last_pong = utcnow()
        self.is_alive = True

    def to_member(self) -> dict:
        return {
            "user_id": self.user.id,
            "user": self.user.to_dict(),
            "role": self.role,
            "connected_at": self.connected_at.isoformat(),
        }


@dataclass
class InboundCommand:
    """A decoded client frame, published on the event bus as websocket:<type>"""
    type: str
    data: Dict[str, Any]
    connection: ConnectionInfo
    received_at: datetime = field(default_factory=utcnow)

    @property
    def user(self) -> UserInfo:
        return self.connection.user

    @property
    def room_id(self) -> Optional[str]:
        return self.data.get("room_id") or self.connection.room_id


def command_handler(manager: "WebSocketManager", handler: Callable[[InboundCommand], Awaitable[Any]]):
    """
    Wrap a websocket command handler: domain errors go back to the caller as
    an error frame, a non-None result as an ack.
    """
    async def run(command: InboundCommand):
        websocket = command.connection.websocket
        try:
            result = await handler(command)
        except RoomsError as e:
            await manager.send(websocket, {"type": "error", "error": e.to_dict(), "command": command.type})
            return
        if result is not None:
            await manager.send(websocket, {"type": "ack", "command": command.type, "result": result})

    run.__name__ = getattr(handler, "__name__", "command")
    return run


@dataclass
class _ParkedSession:
    user_id: str
    room_id: Optional[str]
    parked_at: datetime


class WebSocketManager:
    def __init__(
        self,
        event_bus: EventBus,
        send_timeout: float = 2.0,
        ping_interval: int = 30,
        pong_timeout: int = 10,
        max_message_size: int = 65536,
        reconnect_timeout: int = 60,
    ):
        self.event_bus = event_bus
        self.connection_info: Dict[WebSocket, ConnectionInfo] = {}
        self.room_connections: Dict[str, Set[WebSocket]] = {}
        self.user_connections: Dict[str, List[WebSocket]] = {}
        self.reconnect_tokens: Dict[str, _ParkedSession] = {}
        self._disconnect_listeners: List[DisconnectListener] = []

        # Configuration
        self.send_timeout = send_timeout
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self.max_message_size = max_message_size
        self.reconnect_timeout = reconnect_timeout

        self._tasks: list[asyncio.Task] = []
        self._pending: Set[asyncio.Task] = set()
        self._started: bool = False

    # ------------------------------------------------------------------ lifecycle

    async def start(self):
        """Start background maintenance tasks (must be called inside a running event loop)"""
        if self._started:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._heartbeat_loop(), name="ws-heartbeat"),
            loop.create_task(self._cleanup_loop(), name="ws-cleanup"),
        ]
        self._started = True
        logger.info("WebSocketManager background tasks started")

    async def stop(self):
        """Stop background tasks gracefully"""
        if not self._started:
            return
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._started = False
        logger.info("WebSocketManager background tasks stopped")

    def add_disconnect_listener(self, listener: DisconnectListener):
        self._disconnect_listeners.append(listener)

    # ------------------------------------------------------------------ connections

    async def connect(
        self,
        websocket: WebSocket,
        user: UserInfo,
        reconnect_token: Optional[str] = None,
    ) -> ConnectionInfo:
        """Accept a client; a valid reconnect token tells it which room to rejoin"""
        await websocket.accept()

        resume_room_id = None
        if reconnect_token:
            parked = self.reconnect_tokens.pop(reconnect_token, None)
            if parked and parked.user_id == user.id:
                resume_room_id = parked.room_id
                logger.info(f"User {user.id} reconnected, last room {resume_room_id}")

        info = ConnectionInfo(websocket, user)
        self.connection_info[websocket] = info
        self.user_connections.setdefault(user.id, []).append(websocket)

        await self._send_direct(websocket, {
            "type": "connected",
            "user": user.to_dict(),
            "reconnect_token": info.reconnect_token,
            "resume_room_id": resume_room_id,
            "timestamp": utcnow().isoformat(),
        })
        logger.info(f"WebSocket connected: user={user.id}")
        return info

    async def disconnect(self, websocket: WebSocket, allow_reconnect: bool = True):
        """
        Forget a socket. If it was in a room, the room gets a delta and the
        disconnect listeners are told, unless the same user still has another
        socket in that room.
        """
        info = self.connection_info.pop(websocket, None)
        if not info:
            return

        sockets = self.user_connections.get(info.user_id)
        if sockets and websocket in sockets:
            sockets.remove(websocket)
            if not sockets:
                del self.user_connections[info.user_id]

        if allow_reconnect:
            self.reconnect_tokens[info.reconnect_token] = _ParkedSession(
                user_id=info.user_id, room_id=info.room_id, parked_at=utcnow()
            )

        room_id = info.room_id
        if room_id:
            self._unsubscribe(websocket, room_id)
            info.room_id = None
            if not self.is_user_in_room(room_id, info.user_id):
                await self.broadcast(room_id, {
                    "event": "user_disconnected",
                    "room_id": room_id,
                    "user_id": info.user_id,
                    "timestamp": utcnow().isoformat(),
                })
                await self._notify_disconnect(room_id, info.user)
                await self.broadcast_members(room_id)

        logger.info(f"WebSocket disconnected: user={info.user_id}, room={room_id}")

    async def _notify_disconnect(self, room_id: str, user: UserInfo):
        for listener in self._disconnect_listeners:
            try:
                await listener(room_id, user)
            except Exception as e:
                logger.error(f"Disconnect listener failed for user {user.id} in room {room_id}: {e}")

    # ------------------------------------------------------------------ rooms

    async def join_room(
        self,
        websocket: WebSocket,
        room_id: str,
        role: str,
        snapshot: dict,
        delta: dict,
    ):
        """
        Subscribe a socket to a room: the joiner gets the full snapshot, the
        rest of the room gets the lightweight delta. A socket still subscribed
        elsewhere only loses that subscription; leaving the old room's state
        is the room service's call.
        """
        info = self.connection_info.get(websocket)
        if not info:
            return
        if info.room_id and info.room_id != room_id:
            await self.leave_room(websocket)

        info.room_id = room_id
        info.role = role
        self.room_connections.setdefault(room_id, set()).add(websocket)

        await self._send_direct(websocket, snapshot)
        await self.broadcast(room_id, delta, exclude={websocket})
        await self.broadcast_members(room_id)

    async def leave_room(self, websocket: WebSocket, delta: Optional[dict] = None):
        """Cancel this socket's subscription only; other subscribers are untouched"""
        info = self.connection_info.get(websocket)
        if not info or not info.room_id:
            return
        room_id = info.room_id
        self._unsubscribe(websocket, room_id)
        info.room_id = None
        info.role = None
        if delta:
            await self.broadcast(room_id, delta)
        await self.broadcast_members(room_id)

    async def evict_user(self, room_id: str, user_id: str, message: Optional[dict] = None):
        """Drop every subscription a user holds in a room (kick, ban, room end)"""
        for websocket in list(self.room_connections.get(room_id, ())):
            info = self.connection_info.get(websocket)
            if info and info.user_id == user_id:
                if message:
                    await self._send_direct(websocket, message)
                self._unsubscribe(websocket, room_id)
                info.room_id = None
                info.role = None

    async def close_room(self, room_id: str, message: Optional[dict] = None):
        if message:
            await self.broadcast(room_id, message)
        for websocket in list(self.room_connections.get(room_id, ())):
            info = self.connection_info.get(websocket)
            if info:
                info.room_id = None
                info.role = None
        self.room_connections.pop(room_id, None)

    def update_role(self, room_id: str, user_id: str, role: str):
        for websocket in self.room_connections.get(room_id, ()):
            info = self.connection_info.get(websocket)
            if info and info.user_id == user_id:
                info.role = role

    def _unsubscribe(self, websocket: WebSocket, room_id: str):
        sockets = self.room_connections.get(room_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.room_connections[room_id]

    def room_members(self, room_id: str) -> List[dict]:
        """Explicit presence set for a room, one entry per user"""
        members: Dict[str, dict] = {}
        for websocket in self.room_connections.get(room_id, ()):
            info = self.connection_info.get(websocket)
            if info and info.user_id not in members:
                members[info.user_id] = info.to_member()
        return sorted(members.values(), key=lambda m: m["connected_at"])

    def is_user_in_room(self, room_id: str, user_id: str) -> bool:
        for websocket in self.room_connections.get(room_id, ()):
            info = self.connection_info.get(websocket)
            if info and info.user_id == user_id:
                return True
        return False

    async def broadcast_members(self, room_id: str):
        if room_id not in self.room_connections:
            return
        await self.broadcast(room_id, {
            "event": "users_update",
            "room_id": room_id,
            "connected_users": self.room_members(room_id),
            "timestamp": utcnow().isoformat(),
        })

    # ------------------------------------------------------------------ sending

    async def broadcast(
        self,
        room_id: str,
        message: dict,
        exclude: Optional[Set[WebSocket]] = None,
        exclude_users: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Fan a message out to every socket subscribed to the room. Each send is
        bounded by send_timeout; a failing client is dropped without affecting
        the others. Returns the number of successful deliveries.
        """
        targets = []
        skip_users = set(exclude_users or ())
        for websocket in list(self.room_connections.get(room_id, ())):
            if exclude and websocket in exclude:
                continue
            info = self.connection_info.get(websocket)
            if info is None or info.user_id in skip_users:
                continue
            targets.append(websocket)

        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._send_bounded(ws, message) for ws in targets),
            return_exceptions=True,
        )
        delivered = 0
        for websocket, result in zip(targets, results):
            if result is True:
                delivered += 1
                continue
            if isinstance(result, Exception):
                logger.warning(f"Broadcast to room {room_id} failed for one client: {result!r}")
            self._schedule_disconnect(websocket)
        return delivered

    async def send_to_user(self, user_id: str, message: dict) -> bool:
        """Send message to every socket of a user"""
        sent = False
        for websocket in list(self.user_connections.get(user_id, ())):
            if await self._send_bounded(websocket, message):
                sent = True
            else:
                self._schedule_disconnect(websocket)
        return sent

    async def send(self, websocket: WebSocket, message: dict) -> bool:
        return await self._send_direct(websocket, message)

    async def _send_bounded(self, websocket: WebSocket, message: dict) -> bool:
        try:
            return await asyncio.wait_for(self._send_direct(websocket, message), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send timed out, dropping client")
            return False

    async def _send_direct(self, websocket: WebSocket, message: dict) -> bool:
        """Send message directly to websocket"""
        try:
            if websocket.client_state == WebSocketState.CONNECTED:
                await websocket.send_json(message)
                return True
        except Exception as e:
            logger.debug(f"Direct send failed: {e}")
        return False

    def _schedule_disconnect(self, websocket: WebSocket):
        if websocket not in self.connection_info:
            return
        task = asyncio.get_running_loop().create_task(self.disconnect(websocket))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ------------------------------------------------------------------ inbound

    async def handle_message(self, websocket: WebSocket, message: str):
        """Handle incoming message from client"""
        info = self.connection_info.get(websocket)
        if not info:
            return

        if len(message) > self.max_message_size:
            await self._send_direct(websocket, {"type": "error", "error": {
                "kind": "validation", "code": "message_too_large", "message": "Message too large",
            }})
            return

        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            await self._send_direct(websocket, {"type": "error", "error": {
                "kind": "validation", "code": "invalid_json", "message": "Invalid JSON",
            }})
            return

        if not isinstance(data, dict) or not data.get("type"):
            await self._send_direct(websocket, {"type": "error", "error": {
                "kind": "validation", "code": "missing_type", "message": "Frame needs a type",
            }})
            return

        info.update_activity()
        event_type = data["type"]
        if event_type == "ping":
            await self._handle_ping(websocket)
            return
        if event_type == "pong":
            return

        command = InboundCommand(type=event_type, data=data, connection=info)
        await self.event_bus.publish(f"websocket:{event_type}", command)

    async def _handle_ping(self, websocket: WebSocket):
        info = self.connection_info.get(websocket)
        if info:
            info.last_ping = utcnow()
            await self._send_direct(websocket, {"type": "pong"})

    # ------------------------------------------------------------------ maintenance

    async def _heartbeat_loop(self):
        """Send periodic heartbeat to all connections"""
        while True:
            try:
                await asyncio.sleep(self.ping_interval)

                for websocket, info in list(self.connection_info.items()):
                    if websocket.client_state != WebSocketState.CONNECTED:
                        await self.disconnect(websocket)
                        continue
                    silent_for = (utcnow() - info.last_pong).total_seconds()
                    if silent_for > self.ping_interval + self.pong_timeout * 2:
                        logger.warning(f"Connection stale for user {info.user_id}")
                        await self.disconnect(websocket)
                        continue
                    await self._send_direct(websocket, {"type": "ping"})
                    info.last_ping = utcnow()

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Heartbeat error: {e}")

    async def _cleanup_loop(self):
        """Expire parked reconnect tokens"""
        while True:
            try:
                await asyncio.sleep(60)
                now = utcnow()
                expired = [
                    token for token, parked in self.reconnect_tokens.items()
                    if (now - parked.parked_at).total_seconds() > self.reconnect_timeout
                ]
                for token in expired:
                    del self.reconnect_tokens[token]

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Cleanup error: {e}")

    def get_connection_stats(self) -> Dict:
        """Get statistics about current connections"""
        return {
            "total_connections": len(self.connection_info),
            "room_connections": sum(len(conns) for conns in self.room_connections.values()),
            "active_rooms": len(self.room_connections),
            "active_users": len(self.user_connections),
            "reconnect_tokens": len(self.reconnect_tokens),
        }

    async def close_all(self):
        """Close all connections gracefully"""
        for websocket in list(self.connection_info.keys()):
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Close failed: {e}")
            # drop bookkeeping only; room state is not touched on shutdown
            info = self.connection_info.pop(websocket, None)
            if info and info.room_id:
                self._unsubscribe(websocket, info.room_id)
        self.user_connections.clear()
