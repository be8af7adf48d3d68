"""
Teaching demands API: students ask a teacher to become their mentor, teachers accept, either side cancels.
Notifications go out after the transaction committed.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_notifier, require_roles
from app.api.serializers import demand_to_dict
from app.database import get_db
from app.models.user import User
from app.schemas.teaching_demand import TeachingDemandLookupResponse, TeachingDemandResponse
from app.schemas.user import PageResponse
from app.services import notifications, teaching_demands
from app.services.notifications import NotificationBus

router = APIRouter(prefix="/teaching-demands", tags=["teaching-demands"])
logger = logging.getLogger(__name__)


@router.get("", response_model=PageResponse)
def list_demands(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("student", "teacher")),
):
    """Sent demands for students, received demands for teachers."""
    page = teaching_demands.list_demands(db, current_user, request.query_params)
    return page.serialize(demand_to_dict)


@router.get("/user/{user_id}", response_model=TeachingDemandLookupResponse)
def get_demand_with(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("student", "teacher")),
):
    demand = teaching_demands.get_demand_between(db, current_user, user_id)
    return {"teaching_demand": demand_to_dict(demand) if demand else None}


@router.post("/user/{user_id}", response_model=TeachingDemandResponse, status_code=status.HTTP_201_CREATED)
def send_demand(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("student")),
    notifier: NotificationBus = Depends(get_notifier),
):
    demand = teaching_demands.send_demand(db, current_user, user_id)
    body = demand_to_dict(demand)
    notifier.publish(notifications.DEMAND_SENT, body, [demand.receiver_id])
    return body


@router.post("/{demand_id}/accept", response_model=TeachingDemandResponse)
def accept_demand(
    demand_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("teacher")),
    notifier: NotificationBus = Depends(get_notifier),
):
    """Accept a pending demand: the student gets you as supervisor, their other pending demands are cancelled."""
    demand = teaching_demands.accept_demand(db, demand_id, current_user)
    body = demand_to_dict(demand)
    notifier.publish(notifications.DEMAND_ACCEPTED, body, [demand.sender_id])
    return body


@router.post("/{demand_id}/cancel", response_model=TeachingDemandResponse)
def cancel_demand(
    demand_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("student", "teacher")),
    notifier: NotificationBus = Depends(get_notifier),
):
    demand = teaching_demands.cancel_demand(db, demand_id, current_user)
    body = demand_to_dict(demand)
    other = demand.receiver_id if current_user.id == demand.sender_id else demand.sender_id
    notifier.publish(notifications.DEMAND_CANCELLED, body, [other])
    return body
