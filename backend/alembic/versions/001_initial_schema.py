"""Initial schema: users and relationship sets, teaching demands, messages, events, tasks.

Revision ID: 001
Revises:
Create Date: Initial

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# UuidType stores UUIDs as 36-char strings on every backend
_UUID = sa.String(36)


def _user_fk(name: str, ondelete: str = "CASCADE", nullable: bool = False, primary_key: bool = False) -> sa.Column:
    return sa.Column(name, _UUID, sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable, primary_key=primary_key)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("firstname", sa.String(100), nullable=False),
        sa.Column("lastname", sa.String(100), nullable=False),
        sa.Column("photo", sa.String(1024), nullable=False, server_default="default.jpg"),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("is_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmation_token", sa.String(64), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("purge_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("supervisor_id", _UUID, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("role IN ('admin', 'teacher', 'student')", name="users_role_check"),
        sa.ForeignKeyConstraint(["supervisor_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_confirmation_token", "users", ["confirmation_token"], unique=False)
    op.create_index("ix_users_is_deleted", "users", ["is_deleted"], unique=False)
    op.create_index("ix_users_purge_after", "users", ["purge_after"], unique=False)
    op.create_index("ix_users_supervisor_id", "users", ["supervisor_id"], unique=False)

    op.create_table(
        "user_contacts",
        _user_fk("user_id", primary_key=True),
        _user_fk("contact_id", primary_key=True),
    )
    op.create_table(
        "user_invitations",
        _user_fk("user_id", primary_key=True),
        _user_fk("sender_id", primary_key=True),
    )
    op.create_table(
        "user_supervised",
        _user_fk("teacher_id", primary_key=True),
        _user_fk("student_id", primary_key=True),
    )

    op.create_table(
        "teaching_demands",
        sa.Column("id", _UUID, nullable=False),
        _user_fk("sender_id"),
        _user_fk("receiver_id"),
        sa.Column("sent", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("NOT (accepted AND cancelled)", name="teaching_demands_terminal_check"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_teaching_demands_sender_id", "teaching_demands", ["sender_id"], unique=False)
    op.create_index("ix_teaching_demands_receiver_id", "teaching_demands", ["receiver_id"], unique=False)
    op.create_index(
        "uq_teaching_demands_active_pair",
        "teaching_demands",
        ["sender_id", "receiver_id"],
        unique=True,
        postgresql_where=sa.text("NOT cancelled"),
        sqlite_where=sa.text("NOT cancelled"),
    )
    op.create_index(
        "uq_teaching_demands_single_mentor",
        "teaching_demands",
        ["sender_id"],
        unique=True,
        postgresql_where=sa.text("accepted"),
        sqlite_where=sa.text("accepted"),
    )

    op.create_table(
        "messages",
        sa.Column("id", _UUID, nullable=False),
        _user_fk("sender_id"),
        _user_fk("receiver_id"),
        sa.Column("pair_key", sa.String(73), nullable=False),
        sa.Column("content", sa.String(255), nullable=True),
        sa.Column("files", sa.JSON(), nullable=False),
        sa.Column("sent", sa.DateTime(timezone=True), nullable=False),
        sa.Column("index_message", sa.Integer(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("pair_key", "index_message", name="uq_messages_pair_index"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"], unique=False)
    op.create_index("ix_messages_receiver_id", "messages", ["receiver_id"], unique=False)
    op.create_index("ix_messages_pair_sent", "messages", ["pair_key", "sent"], unique=False)
    op.create_index("ix_messages_receiver_read", "messages", ["receiver_id", "read"], unique=False)

    op.create_table(
        "events",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("title", sa.String(20), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("beginning", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end", sa.DateTime(timezone=True), nullable=False),
        _user_fk("organizer_id"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('"end" >= beginning', name="events_end_after_beginning_check"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_beginning", "events", ["beginning"], unique=False)
    op.create_index("ix_events_organizer_id", "events", ["organizer_id"], unique=False)
    for table in ("event_guests", "event_attendees"):
        op.create_table(
            table,
            sa.Column("event_id", _UUID, sa.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
            _user_fk("user_id", primary_key=True),
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"], unique=False)

    op.create_table(
        "tasks",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("title", sa.String(20), nullable=False),
        _user_fk("performer_id"),
        sa.Column("done", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("validated", sa.Boolean(), nullable=False, server_default=sa.false()),
        _user_fk("validator_id", ondelete="SET NULL", nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("NOT validated OR done", name="tasks_validated_implies_done_check"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_performer_id", "tasks", ["performer_id"], unique=False)
    op.create_index("ix_tasks_validator_id", "tasks", ["validator_id"], unique=False)


def downgrade() -> None:
    op.drop_table("tasks")
    op.drop_table("event_attendees")
    op.drop_table("event_guests")
    op.drop_table("events")
    op.drop_table("messages")
    op.drop_table("teaching_demands")
    op.drop_table("user_supervised")
    op.drop_table("user_invitations")
    op.drop_table("user_contacts")
    op.drop_table("users")
