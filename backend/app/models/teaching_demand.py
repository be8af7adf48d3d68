"""
TeachingDemand: mentorship request from a student (sender) to a teacher (receiver).
PENDING (accepted=false, cancelled=false) -> ACCEPTED | CANCELLED; never deleted.
The partial unique indexes are the store-level guard against concurrent creates/accepts:
one non-cancelled demand per pair, one accepted demand per sender.
"""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, DateTime, CheckConstraint, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.database import Base
from app.models.types import UuidType, utcnow


class TeachingDemand(Base):
    __tablename__ = "teaching_demands"

    id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), primary_key=True, default=uuid.uuid4
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sent: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("NOT (accepted AND cancelled)", name="teaching_demands_terminal_check"),
        Index(
            "uq_teaching_demands_active_pair",
            "sender_id",
            "receiver_id",
            unique=True,
            postgresql_where=text("NOT cancelled"),
            sqlite_where=text("NOT cancelled"),
        ),
        Index(
            "uq_teaching_demands_single_mentor",
            "sender_id",
            unique=True,
            postgresql_where=text("accepted"),
            sqlite_where=text("accepted"),
        ),
    )

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    @property
    def state(self) -> str:
        if self.accepted:
            return "accepted"
        if self.cancelled:
            return "cancelled"
        return "pending"
