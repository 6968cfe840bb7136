"""WebSocket endpoint — the bidirectional transport every instance uses.

Learn: One connection per editor instance. The handler:
1. Accepts the socket and registers it (the gateway assigns the instance id)
2. Feeds every text or binary frame to the connection registry, in order
3. Unregisters on disconnect; the session record outlives the socket

Clients connect to ws://host:port/ (the historical path) or /ws.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/")
@router.websocket("/ws")
async def bridge_websocket(websocket: WebSocket):
    """Bridge connection for one instance."""
    gateway = websocket.app.state.gateway
    connections = gateway.connections

    await websocket.accept()
    instance_id = connections.on_connect(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await connections.on_frame(instance_id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        connections.on_close(instance_id, websocket)
        if (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        ):
            await websocket.close()
