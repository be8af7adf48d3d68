"""
Auth routes: register (student or teacher), confirm link, login (JWT), GET /auth/me.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.database import get_db
from app.models.user import User
from app.schemas.auth import RegisterRequest, LoginRequest, TokenResponse, UserResponse
from app.schemas.user import MessageResponse
from app.services.auth import (
    create_access_token,
    create_link_token,
    hash_link_token,
    hash_password,
    verify_password,
)
from app.api.deps import get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

DUPLICATE_ACCOUNT_MSG = "Email or username already registered"


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        email=user.email,
        username=user.username,
        firstname=user.firstname,
        lastname=user.lastname,
        photo=user.photo,
        role=user.role,
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    """Register a new student or teacher; the account must be confirmed before login."""
    existing = (
        db.query(User.id)
        .filter(or_(User.email == data.email, User.username == data.username))
        .first()
    )
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_ACCOUNT_MSG)
    token, token_hash = create_link_token()
    user = User(
        email=data.email,
        username=data.username,
        firstname=data.firstname,
        lastname=data.lastname,
        password_hash=hash_password(data.password),
        role=data.role,
        is_confirmed=not settings.require_confirmation,
        confirmation_token=token_hash if settings.require_confirmation else None,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("Register IntegrityError: %s", e)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_ACCOUNT_MSG)
    db.refresh(user)
    if settings.require_confirmation:
        # Mail delivery is external; the link is logged for the operator / local dev.
        logger.info("Confirmation link for %s: /auth/confirm/%s", user.email, token)
    return _user_to_response(user)


@router.get("/confirm/{token}", response_model=MessageResponse)
def confirm(token: str, db: Session = Depends(get_db)):
    """Open the confirmation link: the account can log in afterwards."""
    user = (
        db.query(User)
        .filter(User.confirmation_token == hash_link_token(token), User.is_deleted.is_(False))
        .first()
    )
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid or expired confirmation link")
    user.is_confirmed = True
    user.confirmation_token = None
    db.commit()
    logger.info("Account %s confirmed", user.id)
    return MessageResponse(message="Your account is confirmed.")


@router.post("/login", response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    """Login with email/password; returns JWT."""
    user = db.query(User).filter(User.email == data.email, User.is_deleted.is_(False)).first()
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if settings.require_confirmation and not user.is_confirmed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Please confirm your account first")
    token = create_access_token(user.id, user.role)
    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    """Return the current user."""
    return _user_to_response(current_user)
