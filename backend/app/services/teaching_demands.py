"""
Teaching-demand state machine.

    PENDING --accept (receiver)--> ACCEPTED   (cascade: app.services.supervision)
    PENDING --cancel (sender or receiver)--> CANCELLED

Terminal states reject every further transition (double submissions fail loudly).
Races are settled by the store: conditional UPDATEs, a row lock on the sender and the partial
unique indexes on teaching_demands. The loser of a concurrent accept gets InvalidStateError.
"""
import logging
import uuid

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import metrics
from app.errors import AppError, ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from app.models.teaching_demand import TeachingDemand
from app.models.user import User
from app.services import supervision
from app.services.query import Page, QueryFeatures
from app.services.users import get_active_user

logger = logging.getLogger(__name__)

ALREADY_COLLABORATING_MSG = "You are already collaborating with this teacher."
PENDING_REQUEST_MSG = "There is a pending teaching request sent to this teacher."
MULTIPLE_MENTORS_MSG = "You can't have multiple mentors."
NOT_FOUND_MSG = "No teaching demand found with that ID."

DEMAND_QUERY_FIELDS = {
    "sent": TeachingDemand.sent,
    "accepted": TeachingDemand.accepted,
    "cancelled": TeachingDemand.cancelled,
    "sender": TeachingDemand.sender_id,
    "receiver": TeachingDemand.receiver_id,
    "created_at": TeachingDemand.created_at,
}


def _get_demand(db: Session, demand_id: uuid.UUID) -> TeachingDemand:
    demand = db.query(TeachingDemand).filter(TeachingDemand.id == demand_id).first()
    if not demand:
        raise NotFoundError(NOT_FOUND_MSG)
    return demand


def send_demand(db: Session, sender: User, receiver_id: uuid.UUID) -> TeachingDemand:
    """Create a PENDING demand from a student to a teacher."""
    if sender.role != "student":
        raise ForbiddenError("Only students can send teaching demands.")
    teacher = get_active_user(db, receiver_id)
    if teacher.role != "teacher":
        raise NotFoundError("No teacher found with that ID.")

    try:
        # Same sender lock as accept_demand: a create and an accept for one student never interleave.
        db.query(User).filter(User.id == sender.id).with_for_update().one()
        existing = (
            db.query(TeachingDemand)
            .filter(
                TeachingDemand.sender_id == sender.id,
                TeachingDemand.receiver_id == teacher.id,
                TeachingDemand.cancelled.is_(False),
            )
            .first()
        )
        if existing:
            raise ConflictError(ALREADY_COLLABORATING_MSG if existing.accepted else PENDING_REQUEST_MSG)

        demand = TeachingDemand(sender_id=sender.id, receiver_id=teacher.id, accepted=False, cancelled=False)
        db.add(demand)
        db.flush()
        # Read after the insert, so an accept committed since the checks above is seen here.
        has_mentor = (
            db.query(TeachingDemand.id)
            .filter(TeachingDemand.sender_id == sender.id, TeachingDemand.accepted.is_(True))
            .first()
        )
        if has_mentor:
            raise ConflictError(MULTIPLE_MENTORS_MSG)
        db.commit()
    except IntegrityError:
        # uq_teaching_demands_active_pair: a concurrent request created the same demand first
        db.rollback()
        logger.warning("send_demand: concurrent duplicate sender=%s receiver=%s", sender.id, teacher.id)
        raise ConflictError(PENDING_REQUEST_MSG)
    except AppError:
        db.rollback()
        raise
    db.refresh(demand)
    logger.info("Teaching demand %s sent: student=%s teacher=%s", demand.id, sender.id, teacher.id)
    return demand


def accept_demand(db: Session, demand_id: uuid.UUID, actor: User) -> TeachingDemand:
    """Accept a PENDING demand (receiver only) and apply the supervision cascade atomically."""
    demand = _get_demand(db, demand_id)
    if demand.receiver_id != actor.id:
        raise ForbiddenError("You can't accept demands that weren't sent to you.")
    if demand.cancelled:
        raise InvalidStateError("You can't accept demands that were cancelled.")
    if demand.accepted:
        raise InvalidStateError("This teaching demand was already accepted.")

    try:
        # Serializes accepts per sender (FOR UPDATE on PostgreSQL; SQLite serializes writers).
        student = (
            db.query(User)
            .filter(User.id == demand.sender_id)
            .with_for_update()
            .one()
        )
        result = db.execute(
            update(TeachingDemand)
            .where(
                TeachingDemand.id == demand.id,
                TeachingDemand.accepted.is_(False),
                TeachingDemand.cancelled.is_(False),
            )
            .values(accepted=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError("This teaching demand is no longer pending.")
        teacher = db.query(User).filter(User.id == demand.receiver_id).one()
        supervision.apply_accepted_demand(db, demand, student, teacher)
        db.commit()
    except IntegrityError:
        # uq_teaching_demands_single_mentor: another teacher accepted this student first
        db.rollback()
        total = metrics.increment_demand_accept_conflicts_total()
        logger.warning("accept_demand: lost race for demand %s (conflicts=%s)", demand_id, total)
        raise InvalidStateError("This student already has a mentor.")
    except AppError:
        db.rollback()
        metrics.increment_demand_accept_conflicts_total()
        raise
    db.refresh(demand)
    logger.info("Teaching demand %s accepted by %s", demand.id, actor.id)
    return demand


def cancel_demand(db: Session, demand_id: uuid.UUID, actor: User) -> TeachingDemand:
    """Cancel a PENDING demand (sender or receiver). No cascade."""
    demand = _get_demand(db, demand_id)
    if actor.id not in (demand.sender_id, demand.receiver_id):
        raise ForbiddenError("You can't cancel demands that you didn't send or receive.")
    if demand.accepted:
        raise InvalidStateError("You can't cancel demands that were accepted.")
    if demand.cancelled:
        raise InvalidStateError("This teaching demand was already cancelled.")

    result = db.execute(
        update(TeachingDemand)
        .where(
            TeachingDemand.id == demand.id,
            TeachingDemand.accepted.is_(False),
            TeachingDemand.cancelled.is_(False),
        )
        .values(cancelled=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidStateError("This teaching demand is no longer pending.")
    db.commit()
    db.refresh(demand)
    logger.info("Teaching demand %s cancelled by %s", demand.id, actor.id)
    return demand


def list_demands(db: Session, actor: User, params) -> Page:
    """Students see demands they sent; teachers see demands they received."""
    own = TeachingDemand.sender_id == actor.id if actor.role == "student" else TeachingDemand.receiver_id == actor.id
    features = QueryFeatures(TeachingDemand, params, DEMAND_QUERY_FIELDS, default_sort="-sent")
    return features.execute(db, own)


def get_demand_between(db: Session, actor: User, other_id: uuid.UUID) -> TeachingDemand | None:
    """Most recent demand between actor and other, whichever of the two sent it."""
    get_active_user(db, other_id)
    return (
        db.query(TeachingDemand)
        .filter(
            or_(
                (TeachingDemand.sender_id == actor.id) & (TeachingDemand.receiver_id == other_id),
                (TeachingDemand.sender_id == other_id) & (TeachingDemand.receiver_id == actor.id),
            )
        )
        .order_by(TeachingDemand.sent.desc())
        .first()
    )
