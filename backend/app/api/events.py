"""
Events API: organizer creates/updates/deletes, guests accept or decline, calendar views by period.
"""
import logging
import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_notifier, require_roles
from app.api.serializers import event_to_dict
from app.database import get_db
from app.models.user import User
from app.schemas.event import EventCreateRequest, EventListResponse, EventResponse, EventUpdateRequest
from app.schemas.user import PageResponse
from app.services import events, notifications
from app.services.notifications import NotificationBus

router = APIRouter(prefix="/events", tags=["events"])
logger = logging.getLogger(__name__)

_member = require_roles("student", "teacher")


@router.get("", response_model=PageResponse)
def list_events(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
):
    """Events you organize, are invited to or attend."""
    page = events.list_events(db, current_user, request.query_params)
    return page.serialize(event_to_dict)


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    data: EventCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
    notifier: NotificationBus = Depends(get_notifier),
):
    event = events.create_event(
        db,
        current_user,
        title=data.title,
        description=data.description,
        beginning=data.beginning,
        end=data.end,
        guest_ids=data.guests,
    )
    body = event_to_dict(event)
    notifier.publish(notifications.EVENT_CREATED, body, [u.id for u in event.guests])
    return body


@router.get("/calendar/{period}", response_model=EventListResponse)
def calendar(
    period: str,
    day: date | None = Query(None, alias="date"),
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
):
    """Events beginning in the day/week/month/year containing ?date= (default today), shifted by ?offset= periods."""
    rows = events.list_calendar(db, current_user, period, day=day, offset=offset)
    return {"items": [event_to_dict(e) for e in rows]}


@router.get("/{event_id}", response_model=EventResponse)
def get_event(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
):
    return event_to_dict(events.get_event(db, event_id, current_user))


@router.patch("/{event_id}", response_model=EventResponse)
def update_event(
    event_id: uuid.UUID,
    data: EventUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
    notifier: NotificationBus = Depends(get_notifier),
):
    event = events.update_event(db, event_id, current_user, data.model_dump(exclude_unset=True))
    body = event_to_dict(event)
    notifier.publish(notifications.EVENT_MODIFIED, body, event.participant_ids() - {current_user.id})
    return body


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
    notifier: NotificationBus = Depends(get_notifier),
):
    notify = events.delete_event(db, event_id, current_user)
    notifier.publish(notifications.EVENT_DELETED, {"id": str(event_id)}, notify)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{event_id}/accept", response_model=EventResponse)
def accept_invitation(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
    notifier: NotificationBus = Depends(get_notifier),
):
    event = events.accept_invitation(db, event_id, current_user)
    body = event_to_dict(event)
    notifier.publish(notifications.EVENT_ACCEPTED, body, [event.organizer_id])
    return body


@router.post("/{event_id}/decline", response_model=EventResponse)
def decline_invitation(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(_member),
    notifier: NotificationBus = Depends(get_notifier),
):
    event = events.decline_invitation(db, event_id, current_user)
    body = event_to_dict(event)
    notifier.publish(notifications.EVENT_DECLINED, body, [event.organizer_id])
    return body
