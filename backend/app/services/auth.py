"""
Auth service: password hashing, JWT creation/verification and account confirmation tokens.
Uses bcrypt directly (no passlib) to avoid passlib/bcrypt version conflicts.
"""
import hashlib
import secrets
from datetime import datetime, timedelta
from uuid import UUID
import bcrypt
from jose import JWTError, jwt
from app.config import settings

# Bcrypt limit is 72 bytes; use 71 so we never exceed
BCRYPT_MAX_BYTES = 71


def _truncate_to_bytes(s: str, max_bytes: int = BCRYPT_MAX_BYTES) -> bytes:
    """Truncate string to at most max_bytes UTF-8; return bytes for bcrypt."""
    if not s:
        return b""
    encoded = s.encode("utf-8")
    if len(encoded) <= max_bytes:
        return encoded
    return encoded[:max_bytes]


def hash_password(password: str) -> str:
    """Hash password for storage. Raises ValueError if password is None."""
    if password is None:
        raise ValueError("password is required")
    raw = _truncate_to_bytes(password)
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    raw = _truncate_to_bytes(plain)
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user_id: UUID, role: str) -> str:
    expire = datetime.utcnow() + timedelta(hours=settings.jwt_expire_hours)
    # JWT exp must be numeric (Unix timestamp), not datetime
    payload = {"sub": str(user_id), "role": role, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def hash_link_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_link_token() -> tuple[str, str]:
    """Return (token sent to the user, sha256 stored in the DB)."""
    token = secrets.token_hex(32)
    return token, hash_link_token(token)
