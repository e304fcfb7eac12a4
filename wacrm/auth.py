import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .database import get_db
from .models import Agent, User
from .security_utils import decode_access_token

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str, db: Session) -> Optional[User]:
    """Decode a session token and load its user, None when either step fails"""
    if not token or len(token.split(".")) != 3:
        logger.warning(f"Malformed token received, length: {len(token or '')}")
        return None

    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        return None

    return db.query(User).filter(User.id == payload["sub"]).first()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user from the bearer session token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    user = resolve_user_from_token(credentials.credentials, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    logger.debug(f"User authenticated: {user.email}")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Like get_current_user but returns None for anonymous callers"""
    if not credentials:
        return None
    return resolve_user_from_token(credentials.credentials, db)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        logger.warning(f"Non-admin user {user.email} attempted an admin operation")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def get_current_agent(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Agent:
    """Agent record owned by the authenticated user"""
    agent = db.query(Agent).filter(Agent.user_id == user.id).first()
    if not agent:
        raise HTTPException(status_code=403, detail="Agent not found")
    return agent


def ensure_agent_access(agent_id, user: User, db: Session) -> Agent:
    """Load an agent by id and check the caller owns it"""
    if agent_id in (None, ""):
        raise HTTPException(status_code=400, detail="agentId is required")
    try:
        agent_pk = int(agent_id)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail="agentId must be a number") from e

    agent = db.query(Agent).filter(Agent.id == agent_pk, Agent.user_id == user.id).first()
    if not agent:
        raise HTTPException(status_code=403, detail="Agent not found or access denied")
    return agent
