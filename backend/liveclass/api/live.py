"""
Live meeting channel (WebSocket).
"""

from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from liveclass.runtime import live_coordinator
from liveclass.services.live_hub import LiveConnection

router = APIRouter(prefix="/api/v1/live", tags=["Live"])


def _parse_user_id(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@router.websocket("/ws")
async def live_socket(websocket: WebSocket):
    await websocket.accept()
    connection = LiveConnection(websocket, user_id=_parse_user_id(websocket.query_params.get("user_id")))
    await live_coordinator.connect(connection)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except (KeyError, ValueError):
                # KeyError: a binary frame carries no "text" field.
                await live_coordinator.reject(connection, "Invalid JSON payload")
                continue
            await live_coordinator.handle(connection, message)
    except WebSocketDisconnect:
        pass
    finally:
        await live_coordinator.disconnect(connection)
