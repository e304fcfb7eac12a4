import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_optional_user, require_admin
from ..database import get_db
from ..models import User
from ..security_utils import MIN_PASSWORD_LENGTH, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])

USER_ROLES = ("admin", "agent", "user")


class UserCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = "user"


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class PasswordUpdate(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def email_taken(db: Session, email: str, exclude_id: Optional[str] = None) -> bool:
    query = db.query(User).filter(User.email == email)
    if exclude_id:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


@router.post("/add-user", status_code=201)
async def add_user(
    data: UserCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Create a user.

    The very first admin can be created without signing in; after that only
    admins can add users.
    """
    if not data.name or not data.email or not data.password:
        raise HTTPException(status_code=400, detail="Name, email and password are required")
    role = data.role or "user"
    if role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role. Must be admin, agent or user")
    if len(data.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    admin_exists = db.query(User).filter(User.role == "admin").first() is not None
    bootstrap = not admin_exists and role == "admin"
    if not bootstrap:
        if current_user is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        if current_user.role != "admin":
            raise HTTPException(status_code=403, detail="Admin access required")

    email = data.email.strip().lower()
    if email_taken(db, email):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    user = User(name=data.name.strip(), email=email, password_hash=hash_password(data.password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)

    if bootstrap:
        logger.info(f"🔑 First admin created: {user.email}")
    else:
        logger.info(f"User {user.email} ({role}) created by {current_user.email}")
    return {"success": True, "message": "User created successfully", "user": serialize_user(user)}


@router.get("/get-users")
async def get_users(_admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    users = db.query(User).order_by(User.created_at.desc()).all()
    return {"success": True, "users": [serialize_user(u) for u in users]}


@router.put("/update-user/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdate,
    _admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if data.role is not None and data.role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role. Must be admin, agent or user")
    if data.email is not None:
        email = data.email.strip().lower()
        if email_taken(db, email, exclude_id=user.id):
            raise HTTPException(status_code=400, detail="User with this email already exists")
        user.email = email
    if data.name is not None:
        user.name = data.name.strip()
    if data.role is not None:
        user.role = data.role

    db.commit()
    db.refresh(user)
    return {"success": True, "message": "User updated successfully", "user": serialize_user(user)}


@router.delete("/delete-user/{user_id}")
async def delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.role == "admin":
        raise HTTPException(status_code=403, detail="Cannot delete another admin")
    if user.agent:
        raise HTTPException(status_code=400, detail="User is an agent. Use delete-agent instead")

    db.delete(user)
    db.commit()
    logger.info(f"User {user_id} deleted by {admin.email}")
    return {"success": True, "message": "User deleted successfully"}


@router.api_route("/update-password", methods=["POST", "PATCH"])
async def update_password(
    data: PasswordUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not data.new_password or len(data.new_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if data.current_password and not verify_password(data.current_password, current_user.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    current_user.password_hash = hash_password(data.new_password)
    db.commit()
    logger.info(f"Password updated for user: {current_user.email}")
    return {"success": True, "message": "Password updated successfully"}
