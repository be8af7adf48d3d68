"""
Task: performed by a student, validated by the student's supervisor. validated implies done.
"""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, String, DateTime, CheckConstraint, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.types import UuidType, utcnow


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(20), nullable=False)
    performer_id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validator_id: Mapped[uuid.UUID | None] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("NOT validated OR done", name="tasks_validated_implies_done_check"),
    )

    performer = relationship("User", foreign_keys=[performer_id])
    validator = relationship("User", foreign_keys=[validator_id])
