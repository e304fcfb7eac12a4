"""
Real-time events for the dashboard
Keeps WebSocket connections per agent room and pushes message and status events
"""

import logging
from collections import defaultdict
from datetime import datetime

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "new-message"
AGENT_STATUS_EVENT = "agent-status-update"


def agent_room(agent_id) -> str:
    return f"agent-{agent_id}"


class ConnectionManager:
    def __init__(self):
        self.active_connections: dict[str, set[WebSocket]] = defaultdict(set)
        self.connection_metadata: dict[WebSocket, dict] = {}

    async def connect(self, websocket: WebSocket, agent_id, user_id: str):
        """Accept a socket and join it to the agent's room"""
        await websocket.accept()
        room = agent_room(agent_id)
        self.active_connections[room].add(websocket)
        self.connection_metadata[websocket] = {
            "room": room,
            "user_id": user_id,
            "connected_at": datetime.utcnow(),
        }
        logger.info(f"WS connected room={room} connections={len(self.active_connections[room])}")

    def disconnect(self, websocket: WebSocket):
        metadata = self.connection_metadata.pop(websocket, None)
        if not metadata:
            return
        room = metadata["room"]
        self.active_connections[room].discard(websocket)
        if not self.active_connections[room]:
            del self.active_connections[room]
        logger.info(f"WS disconnected room={room}")

    def connection_count(self, agent_id) -> int:
        return len(self.active_connections.get(agent_room(agent_id), ()))

    async def emit(self, agent_id, event: str, data: dict):
        """Send an event to every socket in the agent's room"""
        room = agent_room(agent_id)
        sockets = self.active_connections.get(room)
        if not sockets:
            return

        message = jsonable_encoder({"event": event, "data": data})
        disconnected = set()
        for websocket in sockets.copy():
            try:
                await websocket.send_json(message)
            except (RuntimeError, ConnectionError, WebSocketDisconnect) as e:
                logger.debug(f"Dropping dead socket in {room}: {e}")
                disconnected.add(websocket)

        for websocket in disconnected:
            self.disconnect(websocket)

    async def emit_new_message(self, agent_id, customer_id, message: dict):
        await self.emit(agent_id, NEW_MESSAGE_EVENT, {"customer_id": customer_id, "message": message})

    async def emit_agent_status(self, agent_id, data: dict):
        await self.emit(agent_id, AGENT_STATUS_EVENT, data)


# Global connection manager
manager = ConnectionManager()
