"""
Task request/response schemas.
"""
from datetime import datetime

from pydantic import BaseModel, field_validator


class TaskCreateRequest(BaseModel):
    title: str

    @field_validator("title")
    @classmethod
    def title_length(cls, v: str) -> str:
        v = v.strip()
        if not 1 <= len(v) <= 20:
            raise ValueError("A title must have between 1 and 20 characters.")
        return v


class TaskResponse(BaseModel):
    id: str
    title: str
    performer_id: str
    done: bool
    validated: bool
    validator_id: str | None = None
    created_at: datetime


class TaskListResponse(BaseModel):
    items: list[TaskResponse]
