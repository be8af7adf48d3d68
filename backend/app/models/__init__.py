"""
SQLAlchemy models. Import here so Alembic and app can use them.
"""
from app.models.user import User
from app.models.teaching_demand import TeachingDemand
from app.models.message import Message
from app.models.event import Event
from app.models.task import Task

__all__ = ["User", "TeachingDemand", "Message", "Event", "Task"]
