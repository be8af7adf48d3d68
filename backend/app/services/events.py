"""
Events: organizer + guests (invited) + attendees (confirmed). The two participant sets stay disjoint;
every move between them goes through accept_invitation / decline_invitation / update_event.
Calendar windows (day/week/month/year) are computed in settings.timezone.
"""
import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.event import Event, event_attendees, event_guests
from app.models.user import User
from app.services.query import Page, QueryFeatures

logger = logging.getLogger(__name__)

EVENT_NOT_FOUND_MSG = "No event found with that ID."
PERIODS = ("day", "week", "month", "year")

EVENT_QUERY_FIELDS = {
    "title": Event.title,
    "beginning": Event.beginning,
    "end": Event.end,
    "organizer": Event.organizer_id,
    "created_at": Event.created_at,
}


def _participant_filter(user_id: uuid.UUID):
    return or_(
        Event.organizer_id == user_id,
        Event.id.in_(select(event_guests.c.event_id).where(event_guests.c.user_id == user_id)),
        Event.id.in_(select(event_attendees.c.event_id).where(event_attendees.c.user_id == user_id)),
    )


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (SQLite round-trips, clients without offset) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _resolve_participants(db: Session, ids: list[uuid.UUID], organizer_id: uuid.UUID, guest: bool = True) -> list[User]:
    """De-duplicate ids (order kept) and load them; all must exist, be non-admin and not the organizer."""
    unique_ids = list(dict.fromkeys(ids))
    users = []
    for user_id in unique_ids:
        user = db.query(User).filter(User.id == user_id, User.is_deleted.is_(False)).first()
        if not user or user.role == "admin":
            raise ValidationError(
                "You can't invite non existing guests to an event." if guest else "A non-existing user can't attend an event."
            )
        if user.id == organizer_id:
            raise ValidationError(
                "You can't be invited to an event you organize." if guest else "You can't be an attendee of an event you organize."
            )
        users.append(user)
    return users


def _check_dates(beginning: datetime, end: datetime) -> None:
    if end < beginning:
        raise ValidationError("The end date can't happen before the beginning date.")


def create_event(
    db: Session,
    organizer: User,
    title: str,
    description: str,
    beginning: datetime,
    end: datetime,
    guest_ids: list[uuid.UUID] | None = None,
) -> Event:
    beginning, end = as_utc(beginning), as_utc(end)
    _check_dates(beginning, end)
    guests = _resolve_participants(db, guest_ids or [], organizer.id)
    event = Event(
        title=title,
        description=description,
        beginning=beginning,
        end=end,
        organizer_id=organizer.id,
    )
    event.guests = guests
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("Event %s created by %s with %s guest(s)", event.id, organizer.id, len(guests))
    return event


def get_event(db: Session, event_id: uuid.UUID, user: User) -> Event:
    """Event visible to one of its participants; NotFoundError otherwise."""
    event = (
        db.query(Event)
        .filter(Event.id == event_id, _participant_filter(user.id))
        .first()
    )
    if not event:
        raise NotFoundError(EVENT_NOT_FOUND_MSG)
    return event


def _get_any(db: Session, event_id: uuid.UUID) -> Event:
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise NotFoundError(EVENT_NOT_FOUND_MSG)
    return event


def list_events(db: Session, user: User, params) -> Page:
    features = QueryFeatures(Event, params, EVENT_QUERY_FIELDS, default_sort="-beginning")
    return features.execute(db, _participant_filter(user.id))


def calendar_window(period: str, day: date | None = None, offset: int = 0, tz: str | None = None) -> tuple[datetime, datetime]:
    """[start, end) in UTC of the day/week/month/year containing `day` shifted by `offset` periods."""
    if period not in PERIODS:
        raise ValidationError(f"period must be one of: {', '.join(PERIODS)}")
    zone = ZoneInfo(tz or settings.timezone)
    day = day or datetime.now(zone).date()
    if period == "day":
        start = day + timedelta(days=offset)
        stop = start + timedelta(days=1)
    elif period == "week":
        # Weeks start on Sunday
        start = day - timedelta(days=(day.weekday() + 1) % 7) + timedelta(weeks=offset)
        stop = start + timedelta(weeks=1)
    elif period == "month":
        months = day.year * 12 + (day.month - 1) + offset
        start = date(months // 12, months % 12 + 1, 1)
        stop = date((months + 1) // 12, (months + 1) % 12 + 1, 1)
    else:
        start = date(day.year + offset, 1, 1)
        stop = date(day.year + offset + 1, 1, 1)
    return (
        datetime.combine(start, time.min, tzinfo=zone).astimezone(timezone.utc),
        datetime.combine(stop, time.min, tzinfo=zone).astimezone(timezone.utc),
    )


def list_calendar(db: Session, user: User, period: str, day: date | None = None, offset: int = 0) -> list[Event]:
    start, stop = calendar_window(period, day, offset)
    return (
        db.query(Event)
        .filter(_participant_filter(user.id), Event.beginning >= start, Event.beginning < stop)
        .order_by(Event.beginning.asc())
        .all()
    )


def update_event(db: Session, event_id: uuid.UUID, user: User, changes: dict) -> Event:
    """Organizer-only update. guests/attendees lists replace the current sets; a user listed in both stays an attendee."""
    event = get_event(db, event_id, user)
    if event.organizer_id != user.id:
        raise ForbiddenError("You are not the organizer of the event.")

    beginning = as_utc(changes.get("beginning") or event.beginning)
    end = as_utc(changes.get("end") or event.end)
    _check_dates(beginning, end)

    attendee_ids = changes.get("attendees")
    guest_ids = changes.get("guests")
    if attendee_ids is not None:
        event.attendees = _resolve_participants(db, attendee_ids, user.id, guest=False)
    if guest_ids is not None:
        attending = {u.id for u in event.attendees}
        event.guests = _resolve_participants(db, [g for g in guest_ids if g not in attending], user.id)
    elif attendee_ids is not None:
        attending = {u.id for u in event.attendees}
        event.guests = [g for g in event.guests if g.id not in attending]

    event.beginning = beginning
    event.end = end
    if changes.get("title"):
        event.title = changes["title"]
    if changes.get("description"):
        event.description = changes["description"]
    db.commit()
    db.refresh(event)
    return event


def delete_event(db: Session, event_id: uuid.UUID, user: User) -> list[uuid.UUID]:
    """Organizer-only delete. Returns the participants to notify."""
    event = _get_any(db, event_id)
    if event.organizer_id != user.id:
        raise ForbiddenError("You are not the organizer of the event.")
    notify = [u.id for u in event.guests] + [u.id for u in event.attendees]
    db.delete(event)
    db.commit()
    logger.info("Event %s deleted", event_id)
    return notify


def accept_invitation(db: Session, event_id: uuid.UUID, user: User) -> Event:
    """Guest -> attendee."""
    event = _get_any(db, event_id)
    if event.organizer_id == user.id:
        raise ValidationError("You're the organizer of this event.")
    guest = next((u for u in event.guests if u.id == user.id), None)
    if guest is None:
        if any(u.id == user.id for u in event.attendees):
            raise ValidationError("You already accepted to participate in this event.")
        raise ForbiddenError("You were not invited to this event.")
    event.guests.remove(guest)
    event.attendees.append(guest)
    db.commit()
    db.refresh(event)
    return event


def decline_invitation(db: Session, event_id: uuid.UUID, user: User) -> Event:
    """Leave the event: removed from guests or attendees, whichever holds the user."""
    event = _get_any(db, event_id)
    if event.organizer_id == user.id:
        raise ValidationError("You're the organizer of this event.")
    guest = next((u for u in event.guests if u.id == user.id), None)
    attendee = next((u for u in event.attendees if u.id == user.id), None)
    if guest is None and attendee is None:
        raise ForbiddenError("You are not a participant of this event.")
    if guest is not None:
        event.guests.remove(guest)
    else:
        event.attendees.remove(attendee)
    db.commit()
    db.refresh(event)
    return event
