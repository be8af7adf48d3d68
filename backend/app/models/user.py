"""
User model: identity (email + username, both lower-cased and unique), role (admin | teacher | student),
soft delete (is_deleted, deleted_at, purge_after) and the relationship sets.
contacts / invitations / supervised are association tables; supervisor is a self FK.
supervisor and supervised are only written by app.services.supervision.
"""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, CheckConstraint, ForeignKey, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.database import Base
from app.models.types import UuidType

ROLES = ("admin", "teacher", "student")
DEFAULT_PHOTO = "default.jpg"

# Symmetric: one row per direction, maintained together by the contacts service.
user_contacts = Table(
    "user_contacts",
    Base.metadata,
    Column("user_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("contact_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

# Pending contact requests: sender_id asked user_id.
user_invitations = Table(
    "user_invitations",
    Base.metadata,
    Column("user_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("sender_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

# Teacher -> mentees. Primary key keeps the set free of duplicates.
user_supervised = Table(
    "user_supervised",
    Base.metadata,
    Column("teacher_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", UuidType(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UuidType(), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    firstname: Mapped[str] = mapped_column(String(100), nullable=False)
    lastname: Mapped[str] = mapped_column(String(100), nullable=False)
    photo: Mapped[str] = mapped_column(String(1024), nullable=False, default=DEFAULT_PHOTO)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="student", index=True
    )  # admin | teacher | student
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmation_token: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)  # sha256 hex
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Persisted due time of the definitive deletion; the purge job is idempotent and restart-safe.
    purge_after: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    supervisor_id: Mapped[uuid.UUID | None] = mapped_column(
        UuidType(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (CheckConstraint("role IN ('admin', 'teacher', 'student')", name="users_role_check"),)

    supervisor = relationship("User", remote_side=[id], foreign_keys=[supervisor_id])
    supervised = relationship(
        "User",
        secondary=user_supervised,
        primaryjoin=id == user_supervised.c.teacher_id,
        secondaryjoin=id == user_supervised.c.student_id,
        order_by="User.username",
    )
    contacts = relationship(
        "User",
        secondary=user_contacts,
        primaryjoin=id == user_contacts.c.user_id,
        secondaryjoin=id == user_contacts.c.contact_id,
        order_by="User.username",
    )
    invitations = relationship(
        "User",
        secondary=user_invitations,
        primaryjoin=id == user_invitations.c.user_id,
        secondaryjoin=id == user_invitations.c.sender_id,
        order_by="User.username",
    )

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role})>"
