"""
Shared request dependencies: caller identity, admin credential, clock.

Identity is owned by an external collaborator; the core only receives an
opaque user handle in the X-User-Id header.
"""

from datetime import datetime
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import get_settings
from app.core.exceptions import ForbiddenError
from app.db.session import SessionLocal
from app.domain.timewindow import utcnow


def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


def get_is_admin(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> bool:
    expected = get_settings().ADMIN_API_KEY
    return bool(expected) and x_admin_key == expected


def require_admin(is_admin: bool = Depends(get_is_admin)) -> None:
    if not is_admin:
        raise ForbiddenError("Administrative credential required")


def get_now() -> datetime:
    """Request clock; overridden in tests to pin time."""
    return utcnow()


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that opens its own sessions (the sweeper)."""
    return SessionLocal
