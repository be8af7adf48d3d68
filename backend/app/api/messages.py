"""
Messages API: conversations (paginated, newest first), send, last message per counterpart,
unread counters and read receipts.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_notifier, require_roles
from app.api.serializers import message_to_dict, user_summary
from app.database import get_db
from app.models.message import Message
from app.models.user import User
from app.schemas.message import (
    ChatMessageResponse,
    LastMessageListResponse,
    LastMessageLookupResponse,
    MessageSendRequest,
    UnreadCountResponse,
)
from app.schemas.user import PageResponse
from app.services import messages, notifications
from app.services.notifications import NotificationBus

router = APIRouter(prefix="/messages", tags=["messages"])
logger = logging.getLogger(__name__)

_member = require_roles("student", "teacher")


def _last_to_dict(m: Message, user_id: uuid.UUID) -> dict:
    row = message_to_dict(m)
    counterpart = m.receiver if m.sender_id == user_id else m.sender
    row["counterpart"] = user_summary(counterpart)
    return row


@router.get("/last", response_model=LastMessageListResponse)
def last_messages(db: Session = Depends(get_db), current_user: User = Depends(_member)):
    """One entry per conversation: its latest message, most recent conversation first."""
    latest = messages.last_message_per_counterpart(db, current_user)
    return {"items": [_last_to_dict(m, current_user.id) for m in latest]}


@router.get("/last/{user_id}", response_model=LastMessageLookupResponse)
def last_message_with(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
):
    m = messages.last_message_with(db, current_user, user_id)
    return {"message": _last_to_dict(m, current_user.id) if m else None}


@router.get("/unread", response_model=UnreadCountResponse)
def unread(db: Session = Depends(get_db), current_user: User = Depends(_member)):
    return UnreadCountResponse(count=messages.unread_count(db, current_user))


@router.get("/unread/{user_id}", response_model=UnreadCountResponse)
def unread_from(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
):
    return UnreadCountResponse(count=messages.unread_count(db, current_user, from_sender=user_id))


@router.patch("/{message_id}/read", response_model=ChatMessageResponse)
def mark_read(
    message_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
):
    return message_to_dict(messages.mark_read(db, message_id, current_user))


@router.get("/{user_id}", response_model=PageResponse)
def conversation(
    user_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
):
    """Messages exchanged with user_id. Supports page, limit, sort, fields and filters."""
    page = messages.get_conversation(db, current_user, user_id, request.query_params)
    return page.serialize(message_to_dict)


@router.post("/{user_id}", response_model=ChatMessageResponse, status_code=status.HTTP_201_CREATED)
def send(
    user_id: uuid.UUID,
    data: MessageSendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
    notifier: NotificationBus = Depends(get_notifier),
):
    message = messages.send_message(db, current_user, user_id, content=data.content, files=data.files)
    body = message_to_dict(message)
    notifier.publish(notifications.MESSAGE_SENT, body, [message.receiver_id])
    return body
