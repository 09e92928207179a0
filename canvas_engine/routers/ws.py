"""WebSocket router: /ws/clients/{client_id}."""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from canvas_engine.workspace import connection_manager, get_workspace

router = APIRouter(tags=["ws"])


@router.websocket("/ws/clients/{client_id}")
async def ws_canvas(websocket: WebSocket, client_id: str):
    """Canvas WS: on connect send the current state; then stream graph_update and autosave_status messages."""
    await websocket.accept()
    await connection_manager.connect(client_id, websocket)
    try:
        await websocket.send_json({"type": "state", "payload": get_workspace(client_id).state()})
        while True:
            try:
                _ = await websocket.receive_text()
            except WebSocketDisconnect:
                break
    finally:
        await connection_manager.disconnect(client_id, websocket)
