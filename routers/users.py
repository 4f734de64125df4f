# routers/users.py
import logging
from typing import List

from fastapi import APIRouter
from sqlmodel import select

from db import SessionDep
from errors import NotFound, Unauthorized
from models import User
from schemas import MessageResponse, PasswordChange, UserRead
from .auth import AdminDep, CurrentUserRoleDep, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


@router.get("", response_model=List[UserRead])
def list_users(session: SessionDep, current: AdminDep):
    """
    List all users (admin).
    """
    return session.exec(select(User).order_by(User.id)).all()


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: int, session: SessionDep, current: AdminDep):
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@router.put("/me/password", response_model=MessageResponse)
def change_password(
    payload: PasswordChange,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    user = current["user"]

    if not verify_password(payload.current_password, user.password_hash):
        raise Unauthorized("Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    session.add(user)
    session.commit()
    logger.info("User %s changed their password", user.id)
    return {"message": "Password updated successfully"}
