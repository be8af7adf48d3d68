"""
Users API: directory, me / self deletion, contacts and invitations, supervised students,
connection status and admin update/role/delete.
"""
import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_notifier, get_sessions, require_roles
from app.api.serializers import user_summary, user_to_dict
from app.database import get_db
from app.jobs.tasks import run_purge_deleted_users
from app.models.user import User
from app.schemas.user import (
    ConnectionStatusResponse,
    MessageResponse,
    PageResponse,
    RoleUpdateRequest,
    UserListResponse,
    UserSummary,
    UserUpdateRequest,
)
from app.services import notifications, supervision, users
from app.services.notifications import NotificationBus
from app.services.sessions import SessionRegistry

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)


def _summaries(rows: list[User]) -> UserListResponse:
    return UserListResponse(items=[UserSummary(**user_summary(u)) for u in rows])


@router.get("", response_model=PageResponse)
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Paginated directory (admins and yourself excluded). Supports page, limit, sort, fields and filters."""
    page = users.list_users(db, current_user, request.query_params)
    return page.serialize(user_to_dict)


@router.get("/me")
def get_me(current_user: User = Depends(get_current_user)):
    return user_to_dict(current_user)


@router.patch("/me")
def update_me(
    data: UserUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Update your own profile (email, username, names). Password and role changes are refused."""
    return user_to_dict(users.update_me(db, current_user, data.model_dump(exclude_unset=True)))


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_me(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Deactivate your account; it is removed for good once the grace period is over."""
    users.soft_delete(db, current_user)
    background_tasks.add_task(run_purge_deleted_users)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me/contacts", response_model=UserListResponse)
def my_contacts(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return _summaries(users.list_contacts(db, current_user))


@router.get("/me/invitations", response_model=UserListResponse)
def my_invitations(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Users who asked to become your contact."""
    return _summaries(users.list_invitations(db, current_user))


@router.get("/me/supervised", response_model=UserListResponse)
def my_supervised(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("teacher")),
):
    return _summaries(supervision.get_supervised_students(db, current_user.id))


@router.post("/{user_id}/invitation", response_model=MessageResponse)
def invite(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: NotificationBus = Depends(get_notifier),
):
    created = users.send_invitation(db, current_user, user_id)
    if created:
        notifier.publish(notifications.INVITATION_SENT, {"from": user_summary(current_user)}, [user_id])
        return MessageResponse(message="Invitation sent.")
    return MessageResponse(message="Invitation already sent.")


@router.delete("/{user_id}/invitation", response_model=MessageResponse)
def decline_invitation(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    users.decline_invitation(db, current_user, user_id)
    return MessageResponse(message="Invitation declined.")


@router.post("/{user_id}/contact", response_model=UserListResponse)
def add_contact(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: NotificationBus = Depends(get_notifier),
):
    """Accept the invitation of user_id; returns your updated contact list."""
    contacts = users.add_contact(db, current_user, user_id)
    notifier.publish(notifications.INVITATION_ACCEPTED, {"by": user_summary(current_user)}, [user_id])
    return _summaries(contacts)


@router.delete("/{user_id}/contact", response_model=UserListResponse)
def delete_contact(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _summaries(users.delete_contact(db, current_user, user_id))


@router.get("/{user_id}/status", response_model=ConnectionStatusResponse)
def connection_status(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    sessions: SessionRegistry = Depends(get_sessions),
):
    users.get_active_user(db, user_id)
    return ConnectionStatusResponse(connected=sessions.is_connected(user_id))


@router.get("/{user_id}")
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return user_summary(users.get_active_user(db, user_id))


@router.patch("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    data: UserUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("admin")),
):
    return user_to_dict(users.update_user(db, user_id, data.model_dump(exclude_unset=True)))


@router.patch("/{user_id}/role")
def update_role(
    user_id: uuid.UUID,
    data: RoleUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("admin")),
):
    return user_summary(users.set_role(db, user_id, data.role))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("admin")),
):
    users.delete_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
