"""
Message request/response schemas. files are references to already stored files (storage is external).
"""
from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.user import UserSummary


class MessageSendRequest(BaseModel):
    content: str | None = None
    files: list[str] = Field(default_factory=list)


class ChatMessageResponse(BaseModel):
    id: str
    sender: str
    receiver: str
    content: str | None
    files: list[str]
    sent: datetime
    index_message: int
    read: bool


class LastMessageResponse(ChatMessageResponse):
    """Latest message of a conversation plus the other participant."""
    counterpart: UserSummary


class LastMessageListResponse(BaseModel):
    items: list[LastMessageResponse]


class LastMessageLookupResponse(BaseModel):
    message: LastMessageResponse | None = None


class UnreadCountResponse(BaseModel):
    count: int
