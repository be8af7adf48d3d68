"""
Column types and small helpers shared by the models. Works on both SQLite (local/tests) and PostgreSQL.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, TypeDecorator


class UuidType(TypeDecorator):
    """UUID stored as string(36) so the same schema runs on SQLite and PostgreSQL."""
    impl = String(36)
    cache_ok = True

    @property
    def python_type(self):
        return uuid.UUID

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


def utcnow() -> datetime:
    """Timezone-aware now. Python-side default so ordering keeps sub-second precision on SQLite."""
    return datetime.now(timezone.utc)


def conversation_key(user_a: uuid.UUID | str, user_b: uuid.UUID | str) -> str:
    """Key of the unordered pair {a, b}: identical whichever of the two sent the message."""
    a, b = sorted((str(user_a), str(user_b)))
    return f"{a}:{b}"
