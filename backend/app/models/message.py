"""
Message: direct message between two users. index_message numbers the conversation (unordered pair),
not the sender's messages; (pair_key, index_message) is unique so two concurrent sends can't share an index.
"""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, String, Integer, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.types import UuidType, utcnow


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), primary_key=True, default=uuid.uuid4
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pair_key: Mapped[str] = mapped_column(String(73), nullable=False)  # "<min id>:<max id>"
    content: Mapped[str | None] = mapped_column(String(255), nullable=True)
    files: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # ordered stored-file references
    sent: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    index_message: Mapped[int] = mapped_column(Integer, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("pair_key", "index_message", name="uq_messages_pair_index"),
        Index("ix_messages_pair_sent", "pair_key", "sent"),
        Index("ix_messages_receiver_read", "receiver_id", "read"),
    )

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    def counterpart_id(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.receiver_id if self.sender_id == user_id else self.sender_id
