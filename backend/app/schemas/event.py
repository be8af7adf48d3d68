"""
Event request/response schemas.
"""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.schemas.user import UserSummary


def _strip_bounded(v: str | None, max_len: int, label: str) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not 1 <= len(v) <= max_len:
        raise ValueError(f"A {label} must have between 1 and {max_len} characters.")
    return v


class EventCreateRequest(BaseModel):
    title: str
    description: str
    beginning: datetime
    end: datetime
    guests: list[UUID] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def title_length(cls, v: str) -> str:
        return _strip_bounded(v, 20, "title")

    @field_validator("description")
    @classmethod
    def description_length(cls, v: str) -> str:
        return _strip_bounded(v, 255, "description")


class EventUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    beginning: datetime | None = None
    end: datetime | None = None
    guests: list[UUID] | None = None
    attendees: list[UUID] | None = None

    @field_validator("title")
    @classmethod
    def title_length(cls, v: str | None) -> str | None:
        return _strip_bounded(v, 20, "title")

    @field_validator("description")
    @classmethod
    def description_length(cls, v: str | None) -> str | None:
        return _strip_bounded(v, 255, "description")


class EventResponse(BaseModel):
    id: str
    title: str
    description: str
    beginning: datetime
    end: datetime
    organizer: UserSummary
    guests: list[UserSummary]
    attendees: list[UserSummary]
    created_at: datetime


class EventListResponse(BaseModel):
    items: list[EventResponse]
