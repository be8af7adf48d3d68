"""
Users: lookups (soft-deleted accounts are invisible), contact invitations, profile and role changes,
self deletion and the durable purge of self-deleted accounts.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.user import User
from app.services.query import Page, QueryFeatures

logger = logging.getLogger(__name__)

USER_NOT_FOUND_MSG = "No user found with that ID."
PASSWORD_UPDATE_MSG = "Use the reset password mechanisms to update the password."
ROLE_UPDATE_MSG = "Use the /users/{id}/role route to update the role."
TAKEN_IDENTITY_MSG = "This email or username is already taken."
UPDATABLE_FIELDS = ("email", "username", "firstname", "lastname")

USER_QUERY_FIELDS = {
    "username": User.username,
    "firstname": User.firstname,
    "lastname": User.lastname,
    "email": User.email,
    "role": User.role,
    "photo": User.photo,
    "created_at": User.created_at,
}


def get_active_user(db: Session, user_id: uuid.UUID, exclude_admin: bool = True) -> User:
    """Return a non-deleted user (non-admin unless exclude_admin=False) or raise NotFoundError."""
    q = db.query(User).filter(User.id == user_id, User.is_deleted.is_(False))
    if exclude_admin:
        q = q.filter(User.role != "admin")
    user = q.first()
    if not user:
        raise NotFoundError(USER_NOT_FOUND_MSG)
    return user


def list_users(db: Session, actor: User, params) -> Page:
    """Everybody but admins and the caller; the caller can't lift those filters through the query string."""
    features = QueryFeatures(User, params, USER_QUERY_FIELDS, default_sort="username")
    return features.execute(db, User.role != "admin", User.id != actor.id, User.is_deleted.is_(False))


def send_invitation(db: Session, actor: User, target_id: uuid.UUID) -> bool:
    """Ask target to become a contact. Returns False when the invitation was already pending."""
    if target_id == actor.id:
        raise ValidationError("You can't send a contact invitation to yourself.")
    target = get_active_user(db, target_id)
    sender = get_active_user(db, actor.id, exclude_admin=False)
    if any(u.id == sender.id for u in target.invitations):
        return False
    target.invitations.append(sender)
    db.commit()
    logger.info("Contact invitation %s -> %s", sender.id, target.id)
    return True


def decline_invitation(db: Session, actor: User, sender_id: uuid.UUID) -> None:
    if sender_id == actor.id:
        raise ValidationError("You can't decline a contact invitation to yourself.")
    get_active_user(db, sender_id)
    me = get_active_user(db, actor.id, exclude_admin=False)
    sender = next((u for u in me.invitations if u.id == sender_id), None)
    if sender is None:
        raise ValidationError("This user hasn't sent you a contact request.")
    me.invitations.remove(sender)
    db.commit()


def add_contact(db: Session, actor: User, contact_id: uuid.UUID) -> list[User]:
    """Accept a pending invitation from contact_id: both users list each other, invitation removed."""
    if contact_id == actor.id:
        raise ValidationError("You can't add yourself to your contact list.")
    other = get_active_user(db, contact_id)
    me = get_active_user(db, actor.id, exclude_admin=False)
    inviter = next((u for u in me.invitations if u.id == other.id), None)
    if inviter is None:
        raise ValidationError("The user you want to add hasn't sent you a contact request.")
    if all(u.id != other.id for u in me.contacts):
        me.contacts.append(other)
    if all(u.id != me.id for u in other.contacts):
        other.contacts.append(me)
    me.invitations.remove(inviter)
    db.commit()
    db.refresh(me)
    logger.info("Contacts linked: %s <-> %s", me.id, other.id)
    return list(me.contacts)


def delete_contact(db: Session, actor: User, contact_id: uuid.UUID) -> list[User]:
    other = get_active_user(db, contact_id)
    me = get_active_user(db, actor.id, exclude_admin=False)
    me.contacts[:] = [u for u in me.contacts if u.id != other.id]
    other.contacts[:] = [u for u in other.contacts if u.id != me.id]
    db.commit()
    db.refresh(me)
    return list(me.contacts)


def list_contacts(db: Session, actor: User) -> list[User]:
    me = get_active_user(db, actor.id, exclude_admin=False)
    return [u for u in me.contacts if not u.is_deleted]


def list_invitations(db: Session, actor: User) -> list[User]:
    me = get_active_user(db, actor.id, exclude_admin=False)
    return [u for u in me.invitations if not u.is_deleted]


def _clean_changes(changes: dict) -> dict:
    if {"password", "password_confirm"} & changes.keys():
        raise ValidationError(PASSWORD_UPDATE_MSG)
    if "role" in changes:
        raise ValidationError(ROLE_UPDATE_MSG)
    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(f"These fields can't be updated: {', '.join(unknown)}.")
    cleaned = {}
    for field, value in changes.items():
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field} can't be empty.")
        value = value.strip()
        cleaned[field] = value.lower() if field in ("email", "username") else value
    return cleaned


def _apply_changes(db: Session, user: User, changes: dict) -> User:
    for field, value in _clean_changes(changes).items():
        setattr(user, field, value)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("Profile update of %s rejected: %s", user.id, e)
        raise ConflictError(TAKEN_IDENTITY_MSG)
    db.refresh(user)
    return user


def update_me(db: Session, actor: User, changes: dict) -> User:
    """Profile update of the caller; password and role have their own routes."""
    user = _apply_changes(db, get_active_user(db, actor.id, exclude_admin=False), changes)
    logger.info("User %s updated their profile: %s", user.id, sorted(changes))
    return user


def update_user(db: Session, user_id: uuid.UUID, changes: dict) -> User:
    """Admin update of a non-admin user, same rules as update_me."""
    user = _apply_changes(db, get_active_user(db, user_id), changes)
    logger.info("User %s updated by admin: %s", user.id, sorted(changes))
    return user


def set_role(db: Session, user_id: uuid.UUID, role: str) -> User:
    user = get_active_user(db, user_id, exclude_admin=False)
    if user.role == "admin":
        raise ForbiddenError("You can't update the role of an admin user.")
    user.role = role
    db.commit()
    db.refresh(user)
    logger.info("Role of %s set to %s", user.id, role)
    return user


def delete_user(db: Session, user_id: uuid.UUID) -> None:
    """Admin hard delete; dependent rows go with ON DELETE CASCADE / SET NULL."""
    user = get_active_user(db, user_id)
    db.delete(user)
    db.commit()
    logger.info("User %s deleted by admin", user_id)


def soft_delete(db: Session, actor: User, now: datetime | None = None) -> User:
    """Self deletion: hide the account now, purge it once the grace period is over."""
    now = now or datetime.now(timezone.utc)
    user = get_active_user(db, actor.id, exclude_admin=False)
    user.is_deleted = True
    user.deleted_at = now
    user.purge_after = now + timedelta(seconds=settings.hard_delete_grace_seconds)
    db.commit()
    db.refresh(user)
    logger.info("User %s soft-deleted; purge scheduled at %s", user.id, user.purge_after.isoformat())
    return user


def purge_deleted_users(db: Session, now: datetime | None = None) -> list[uuid.UUID]:
    """Hard-delete every soft-deleted user whose purge_after is due. Idempotent; safe after restarts."""
    now = now or datetime.now(timezone.utc)
    due = (
        db.query(User)
        .filter(User.is_deleted.is_(True), User.purge_after.isnot(None), User.purge_after <= now)
        .all()
    )
    ids = [u.id for u in due]
    for user in due:
        db.delete(user)
    if ids:
        db.commit()
        logger.info("Purged %s deleted account(s)", len(ids))
    return ids
