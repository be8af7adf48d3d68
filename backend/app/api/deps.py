"""
Shared dependencies: get_current_user from Bearer token, role guards and the realtime services on app.state.
Soft-deleted accounts are treated as unknown users.
"""
import logging
from uuid import UUID
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.services.auth import decode_access_token
from app.services.notifications import NotificationBus
from app.services.sessions import SessionRegistry

security = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_from_token(db: Session, token: str | None) -> User:
    """Resolve a raw JWT to an active user; 401 otherwise. Shared by HTTP and websocket auth."""
    if not (token or "").strip():
        logger.debug("Auth failed: no Bearer token in request")
        raise _unauthorized("Not authenticated. Send header: Authorization: Bearer <token>")
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        logger.debug("Auth failed: invalid or expired token")
        raise _unauthorized("Invalid or expired token")
    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        raise _unauthorized("Invalid or expired token")
    user = db.query(User).filter(User.id == user_id, User.is_deleted.is_(False)).first()
    if not user:
        raise _unauthorized("User not found")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Require valid Bearer token; return User or 401."""
    token = getattr(credentials, "credentials", None) if credentials else None
    return user_from_token(db, token)


def require_roles(*roles: str):
    """Dependency factory: current user must have one of roles, else 403."""

    def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action.",
            )
        return current_user

    return _check


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_notifier(request: Request) -> NotificationBus:
    return request.app.state.notifier
