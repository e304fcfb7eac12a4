import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import Agent, User
from ..security_utils import create_access_token, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])

# Roles allowed to sign in to the dashboard
LOGIN_ROLES = ("admin", "agent")


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def user_summary(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


def agent_summary(agent: Optional[Agent]) -> Optional[dict]:
    if not agent:
        return None
    return {
        "id": agent.id,
        "agent_prefix": agent.agent_prefix,
        "business_type": agent.business_type,
        "credits": agent.credits,
    }


@router.post("/login")
async def login(data: LoginRequest, db: Session = Depends(get_db)):
    """Exchange email and password for a session token"""
    if not data.email or not data.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = db.query(User).filter(User.email == data.email.strip().lower()).first()
    if not user or not verify_password(data.password, user.password_hash):
        logger.warning(f"Failed login for {data.email}")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if user.role not in LOGIN_ROLES:
        raise HTTPException(status_code=403, detail="Access denied. Only admins and agents can log in.")

    token = create_access_token(user.id)
    logger.info(f"User logged in: {user.email} ({user.role})")
    return {"success": True, "token": token, "user": user_summary(user)}


@router.post("/logout")
async def logout():
    # Tokens are stateless; the dashboard discards its copy
    return {"success": True, "message": "Logged out successfully"}


@router.get("/get-current-user")
async def get_me(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get current authenticated user"""
    agent = db.query(Agent).filter(Agent.user_id == current_user.id).first()
    return {"success": True, "user": {**user_summary(current_user), "agent": agent_summary(agent)}}
