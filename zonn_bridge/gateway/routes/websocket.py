"""WebSocket endpoint for live playback updates."""

import asyncio
import json
import logging
from datetime import datetime

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ...orchestrator import OrchestratorSnapshot
from .playback import snapshot_to_response

logger = logging.getLogger("zonn_bridge.gateway.websocket")

router = APIRouter()

HEARTBEAT_SECONDS = 30.0


class ConnectionManager:
    """Manages WebSocket connections."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        """Broadcast a message to all connected clients."""
        if not self.active_connections:
            return

        message_text = json.dumps(message, default=str)
        disconnected = []

        for connection in list(self.active_connections):
            try:
                await connection.send_text(message_text)
            except Exception as e:
                logger.warning(f"Failed to send to WebSocket: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)


# Global connection manager
manager = ConnectionManager()


class EventType:
    STATE = "state"
    HEARTBEAT = "heartbeat"
    PONG = "pong"


def state_message(snapshot: OrchestratorSnapshot) -> dict:
    return {
        "type": EventType.STATE,
        "timestamp": datetime.now().isoformat(),
        "data": snapshot_to_response(snapshot).model_dump(mode="json"),
    }


async def broadcast_snapshot(snapshot: OrchestratorSnapshot):
    """Broadcast an orchestrator snapshot to all connected clients."""
    await manager.broadcast(state_message(snapshot))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Sends the current state on connect, then every state change, and a
    heartbeat after each quiet period.
    """
    await manager.connect(websocket)
    orchestrator = websocket.app.state.orchestrator

    try:
        await websocket.send_text(
            json.dumps(state_message(orchestrator.snapshot()), default=str)
        )

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=HEARTBEAT_SECONDS
                )

                message = json.loads(data)
                if message.get("type") == "ping":
                    await websocket.send_text(json.dumps({
                        "type": EventType.PONG,
                        "timestamp": datetime.now().isoformat(),
                    }))

            except asyncio.TimeoutError:
                await websocket.send_text(json.dumps({
                    "type": EventType.HEARTBEAT,
                    "timestamp": datetime.now().isoformat(),
                }))

    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        manager.disconnect(websocket)
