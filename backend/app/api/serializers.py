"""
Row -> response dict helpers shared by the routers. Dicts (not models) so list endpoints can apply ?fields=.
"""
from app.models.event import Event
from app.models.message import Message
from app.models.task import Task
from app.models.teaching_demand import TeachingDemand
from app.models.user import User
from app.services.events import as_utc


def user_summary(u: User) -> dict:
    return {
        "id": str(u.id),
        "username": u.username,
        "firstname": u.firstname,
        "lastname": u.lastname,
        "photo": u.photo,
        "role": u.role,
    }


def user_to_dict(u: User) -> dict:
    row = user_summary(u)
    row["email"] = u.email
    row["created_at"] = u.created_at
    return row


def demand_to_dict(d: TeachingDemand) -> dict:
    return {
        "id": str(d.id),
        "sender": user_summary(d.sender),
        "receiver": user_summary(d.receiver),
        "sent": as_utc(d.sent),
        "accepted": d.accepted,
        "cancelled": d.cancelled,
        "state": d.state,
        "created_at": as_utc(d.created_at),
    }


def message_to_dict(m: Message) -> dict:
    return {
        "id": str(m.id),
        "sender": str(m.sender_id),
        "receiver": str(m.receiver_id),
        "content": m.content,
        "files": list(m.files or []),
        "sent": as_utc(m.sent),
        "index_message": m.index_message,
        "read": m.read,
    }


def event_to_dict(e: Event) -> dict:
    return {
        "id": str(e.id),
        "title": e.title,
        "description": e.description,
        "beginning": as_utc(e.beginning),
        "end": as_utc(e.end),
        "organizer": user_summary(e.organizer),
        "guests": [user_summary(u) for u in e.guests],
        "attendees": [user_summary(u) for u in e.attendees],
        "created_at": as_utc(e.created_at),
    }


def task_to_dict(t: Task) -> dict:
    return {
        "id": str(t.id),
        "title": t.title,
        "performer_id": str(t.performer_id),
        "done": t.done,
        "validated": t.validated,
        "validator_id": str(t.validator_id) if t.validator_id else None,
        "created_at": as_utc(t.created_at),
    }
