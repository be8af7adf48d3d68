"""
Conversation sequencer.

index_message numbers a conversation (unordered pair {a, b}) 1, 2, 3, ... whichever side sends.
next_index reads max+1; the unique (pair_key, index_message) constraint rejects a concurrent
duplicate and the insert is retried with tenacity, so an index is never handed out twice.

Last message per counterpart is an explicit two-pass reduction (no store aggregation):
  1. directional groups (sender, receiver) -> latest message of each direction
  2. merge the two directions of each unordered pair -> the later of the two
"""
import logging
import uuid

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random

from app import metrics
from app.config import settings
from app.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.message import Message
from app.models.types import conversation_key
from app.models.user import User
from app.services.query import Page, QueryFeatures
from app.services.users import get_active_user

logger = logging.getLogger(__name__)

MESSAGE_QUERY_FIELDS = {
    "sent": Message.sent,
    "read": Message.read,
    "sender": Message.sender_id,
    "receiver": Message.receiver_id,
    "index_message": Message.index_message,
    "content": Message.content,
}


class IndexConflict(Exception):
    """Another message took the same conversation index first."""


def _is_index_conflict(exc: IntegrityError) -> bool:
    """True only when uq_messages_pair_index rejected the row (not a foreign key or other constraint)."""
    diag = getattr(exc.orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name == "uq_messages_pair_index"
    # SQLite names the columns instead of the constraint
    text = str(exc.orig)
    return "uq_messages_pair_index" in text or "messages.pair_key, messages.index_message" in text


def next_index(db: Session, user_a: uuid.UUID, user_b: uuid.UUID) -> int:
    """Highest index_message of the pair + 1, or 1 for a new conversation."""
    current = (
        db.query(func.max(Message.index_message))
        .filter(Message.pair_key == conversation_key(user_a, user_b))
        .scalar()
    )
    return (current or 0) + 1


def _validate_payload(content: str | None, files: list[str] | None) -> tuple[str | None, list[str]]:
    files = [f for f in (files or []) if f and f.strip()]
    content = content.strip() if content else None
    if not files and not content:
        raise ValidationError("The content can't be empty.")
    if content and len(content) > settings.message_content_max_length:
        raise ValidationError(
            f"A content must have at most {settings.message_content_max_length} characters."
        )
    if len(files) > settings.message_max_files:
        raise ValidationError(f"A message can carry at most {settings.message_max_files} files.")
    return content or None, files


def _insert_once(db: Session, sender_id: uuid.UUID, receiver_id: uuid.UUID, content: str | None, files: list[str]) -> Message:
    message = Message(
        sender_id=sender_id,
        receiver_id=receiver_id,
        pair_key=conversation_key(sender_id, receiver_id),
        content=content,
        files=files,
        index_message=next_index(db, sender_id, receiver_id),
        read=False,
    )
    db.add(message)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if not _is_index_conflict(exc):
            raise
        total = metrics.increment_message_index_conflicts_total()
        logger.warning(
            "Conversation index conflict, retrying",
            extra={"pair_key": message.pair_key, "index_message": message.index_message, "conflicts_total": total},
        )
        raise IndexConflict(message.pair_key)
    db.refresh(message)
    return message


def send_message(
    db: Session,
    sender: User,
    receiver_id: uuid.UUID,
    content: str | None = None,
    files: list[str] | None = None,
) -> Message:
    """Persist a message with the next conversation index."""
    if receiver_id == sender.id:
        raise ValidationError("You can't send a message to yourself.")
    content, files = _validate_payload(content, files)
    receiver = get_active_user(db, receiver_id)
    sender_id, receiver_id = sender.id, receiver.id

    @retry(
        retry=retry_if_exception_type(IndexConflict),
        stop=stop_after_attempt(settings.message_index_max_attempts),
        wait=wait_random(0, 0.05),
        reraise=True,
    )
    def _do():
        return _insert_once(db, sender_id, receiver_id, content, files)

    try:
        message = _do()
    except IndexConflict:
        raise ConflictError("The conversation is busy, please send your message again.")
    logger.info("Message %s sent (%s #%s)", message.id, message.pair_key, message.index_message)
    return message


def get_conversation(db: Session, actor: User, other_id: uuid.UUID, params) -> Page:
    """Messages of the pair {actor, other}, newest first unless ?sort= says otherwise."""
    get_active_user(db, other_id)
    features = QueryFeatures(Message, params, MESSAGE_QUERY_FIELDS, default_sort="-sent")
    return features.execute(db, Message.pair_key == conversation_key(actor.id, other_id))


def _later(a: Message, b: Message) -> Message:
    """Later of two messages by sent; index_message breaks ties inside a pair."""
    return max(a, b, key=lambda m: (m.sent, m.index_message))


def latest_by_counterpart(user_id: uuid.UUID, messages: list[Message]) -> list[Message]:
    """Two-pass reduction: exactly one message per counterpart, the one with the greatest sent."""
    directional: dict[tuple[uuid.UUID, uuid.UUID], Message] = {}
    for m in messages:
        key = (m.sender_id, m.receiver_id)
        current = directional.get(key)
        directional[key] = m if current is None else _later(current, m)

    merged: dict[uuid.UUID, Message] = {}
    for m in directional.values():
        counterpart = m.counterpart_id(user_id)
        current = merged.get(counterpart)
        merged[counterpart] = m if current is None else _later(current, m)

    return sorted(merged.values(), key=lambda m: (m.sent, m.index_message), reverse=True)


def last_message_per_counterpart(db: Session, user: User) -> list[Message]:
    messages = (
        db.query(Message)
        .filter(or_(Message.sender_id == user.id, Message.receiver_id == user.id))
        .all()
    )
    return latest_by_counterpart(user.id, messages)


def last_message_with(db: Session, user: User, other_id: uuid.UUID) -> Message | None:
    get_active_user(db, other_id)
    messages = (
        db.query(Message)
        .filter(Message.pair_key == conversation_key(user.id, other_id))
        .all()
    )
    latest = latest_by_counterpart(user.id, messages)
    return latest[0] if latest else None


def unread_count(db: Session, receiver: User, from_sender: uuid.UUID | None = None) -> int:
    q = db.query(func.count(Message.id)).filter(Message.receiver_id == receiver.id, Message.read.is_(False))
    if from_sender is not None:
        q = q.filter(Message.sender_id == from_sender)
    return q.scalar() or 0


def mark_read(db: Session, message_id: uuid.UUID, actor: User) -> Message:
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        raise NotFoundError("No message found with that ID.")
    if message.receiver_id != actor.id:
        raise ForbiddenError("You are not the receiver of this message.")
    if not message.read:
        message.read = True
        db.commit()
        db.refresh(message)
    return message
