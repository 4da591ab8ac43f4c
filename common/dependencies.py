"""Reusable FastAPI dependencies for auth, database and scheduling access."""
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from scheduling.clock import Clock, get_clock
from scheduling.policy import SchedulingPolicy, get_scheduling_policy
from scheduling.repository import BookingRepository
from scheduling.transactions import BookingTransactionManager

from .auth import decode_token
from .database import get_db
from .models import RoleEnum, User

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    user_id = payload.get("uid")
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id in token")
    user = db.get(User, user_id)
    if not user or user.username != payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


require_elevated = allow_roles(RoleEnum.ADMIN, RoleEnum.FACILITY_MANAGER)


def get_repository(db: Session = Depends(get_db)) -> BookingRepository:
    return BookingRepository(db)


def get_transaction_manager(
    db: Session = Depends(get_db),
    policy: SchedulingPolicy = Depends(get_scheduling_policy),
    clock: Clock = Depends(get_clock),
) -> BookingTransactionManager:
    return BookingTransactionManager(db, policy=policy, clock=clock)
