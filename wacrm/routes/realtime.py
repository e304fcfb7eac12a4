import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from ..auth import resolve_user_from_token
from ..database import SessionLocal
from ..models import Agent
from ..services.realtime import manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


def authorize_socket(agent_id: int, token: Optional[str]) -> Optional[str]:
    """User id allowed to join the agent room, None when the token or ownership check fails"""
    db = SessionLocal()
    try:
        user = resolve_user_from_token(token or "", db)
        if not user:
            return None
        if user.role == "admin":
            return user.id
        agent = db.query(Agent).filter(Agent.id == agent_id, Agent.user_id == user.id).first()
        return user.id if agent else None
    finally:
        db.close()


@router.websocket("/ws/agents/{agent_id}")
async def agent_events(websocket: WebSocket, agent_id: int, token: Optional[str] = Query(None)):
    """Push new-message and agent-status events for one agent"""
    user_id = authorize_socket(agent_id, token)
    if not user_id:
        logger.warning(f"🚫 Rejected WS connection for agent {agent_id}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, agent_id, user_id)
    try:
        while True:
            # Client pings keep the socket alive; payloads are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
