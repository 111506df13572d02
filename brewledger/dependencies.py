"""
FastAPI dependencies for authentication, authorization and services.

Authentication chain:

  get_current_user (JWT -> User)
      ├── require_staff (User -> User)   [STAFF or ADMIN]
      └── require_admin (User -> User)   [ADMIN only]

Role-based access control:
  - MEMBER: Places orders, sends credits, reads their own ledger.
  - STAFF: Everything a member can do, plus redeeming transfer codes,
    moving orders through their statuses and running platform syncs.
  - ADMIN: Staff rights plus credit adjustments and data sweeps.

Service dependencies:
  The notification service, task queue, point-of-sale config,
  order mirror and reconciler are built once in the application lifespan
  and stored on `app.state`. Routes receive them through the getters
  below, and tests replace them with `app.dependency_overrides`.
"""

import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.config import PosPlatformConfig
from brewledger.database import get_db
from brewledger.models.user import User, UserType
from brewledger.security import decode_access_token
from brewledger.services.mirror_service import OrderMirror
from brewledger.services.notification_service import NotificationService
from brewledger.services.reconciler_service import OrderReconciler
from brewledger.services.task_queue import TaskQueue


# The tokenUrl is used by Swagger UI's "Authorize" button
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the JWT token, then return the corresponding User.

    Raises:
        HTTPException 401: If the token is invalid or the user doesn't exist.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        user_id_str: str | None = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        user_id = uuid.UUID(user_id_str)
    except (JWTError, ValueError):
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise credentials_exception

    return user


async def require_staff(
    user: User = Depends(get_current_user),
) -> User:
    """
    Require the staff flag (STAFF or ADMIN role).

    Raises:
        HTTPException 403: If the user is a plain member.
    """
    if not user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required",
        )
    return user


async def require_admin(
    user: User = Depends(get_current_user),
) -> User:
    """
    Require the ADMIN role.

    Raises:
        HTTPException 403: If the user is not an admin.
    """
    if user.user_type != UserType.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


# ---------------------------------------------------------------------------
# Service getters (populated by the lifespan in main.py)
# ---------------------------------------------------------------------------

def get_notifier(request: Request) -> NotificationService:
    return request.app.state.notifier


def get_task_queue(request: Request) -> TaskQueue:
    return request.app.state.task_queue


def get_pos_config(request: Request) -> PosPlatformConfig:
    return request.app.state.pos_config


def get_mirror(request: Request) -> OrderMirror:
    return request.app.state.mirror


def get_reconciler(request: Request) -> OrderReconciler:
    return request.app.state.reconciler
