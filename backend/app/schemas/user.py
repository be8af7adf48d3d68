"""
User, contact and pagination schemas.
"""
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator


class UserSummary(BaseModel):
    """Public view of another user (lists, demand/message counterparts)."""
    id: str
    username: str
    firstname: str
    lastname: str
    photo: str
    role: str

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    items: list[UserSummary]


class PageResponse(BaseModel):
    """Paginated list; items may be projected with ?fields=."""
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int


class RoleUpdateRequest(BaseModel):
    role: Literal["admin", "teacher", "student"]


class UserUpdateRequest(BaseModel):
    """PATCH /users/me and /users/{id}. Extra keys are kept so the service can refuse password and role."""
    model_config = ConfigDict(extra="allow")

    email: EmailStr | None = None
    username: str | None = None
    firstname: str | None = None
    lastname: str | None = None

    @field_validator("email", "username", mode="before")
    @classmethod
    def normalize_identity(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("username")
    @classmethod
    def username_length(cls, v: str | None) -> str | None:
        if v is not None and not 4 <= len(v) <= 30:
            raise ValueError("A username must have between 4 and 30 characters.")
        return v

    @field_validator("firstname", "lastname")
    @classmethod
    def name_length(cls, v: str | None) -> str | None:
        if v is not None and len(v.strip()) < 2:
            raise ValueError("A name must have at least 2 characters.")
        return v.strip() if v is not None else v


class ConnectionStatusResponse(BaseModel):
    connected: bool


class MessageResponse(BaseModel):
    """Plain acknowledgement (invitation sent/declined)."""
    message: str
