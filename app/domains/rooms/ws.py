from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.container import get_ws_services
from app.domains.auth.service import identity_from_payload
from app.shared.utils.security import decode_token

ws_router = APIRouter()


@ws_router.websocket("/ws")
async def websocket_rooms_endpoint(websocket: WebSocket):
    token = websocket.query_params.get("token")
    reconnect_token: Optional[str] = websocket.query_params.get("reconnect_token")
    if not token:
        await websocket.close(code=4401)
        return
    payload = decode_token(token)
    if not payload or "sub" not in payload:
        await websocket.close(code=4401)
        return
    user = identity_from_payload(payload)
    gateway = get_ws_services(websocket).gateway
    await gateway.connect(websocket, user, reconnect_token=reconnect_token)
    try:
        while True:
            data = await websocket.receive_text()
            await gateway.handle_message(websocket, data)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.disconnect(websocket)
