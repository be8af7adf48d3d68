"""
Event: organizer plus two disjoint participant sets. guests = invited, attendees = confirmed.
Moves between the sets only go through app.services.events.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, CheckConstraint, ForeignKey, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.types import UuidType, utcnow

event_guests = Table(
    "event_guests",
    Base.metadata,
    Column("event_id", UuidType(), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
)

event_attendees = Table(
    "event_attendees",
    Base.metadata,
    Column("event_id", UuidType(), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    beginning: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    organizer_id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint('"end" >= beginning', name="events_end_after_beginning_check"),
    )

    organizer = relationship("User", foreign_keys=[organizer_id])
    guests = relationship("User", secondary=event_guests, order_by="User.username")
    attendees = relationship("User", secondary=event_attendees, order_by="User.username")

    def participant_ids(self) -> set[uuid.UUID]:
        return {self.organizer_id} | {u.id for u in self.guests} | {u.id for u in self.attendees}
