"""
Supervision resolver: the only writer of User.supervisor / User.supervised.
Called from the demand accept transaction; it flushes but never commits, so the caller's
commit (or rollback) applies the whole cascade or none of it.
Supervision is never revoked here; there is no revocation path.
"""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.teaching_demand import TeachingDemand
from app.models.user import User

logger = logging.getLogger(__name__)


def cancel_sibling_demands(db: Session, demand: TeachingDemand) -> int:
    """Cancel every other pending demand from the same sender. Returns rows cancelled."""
    result = db.execute(
        update(TeachingDemand)
        .where(
            TeachingDemand.sender_id == demand.sender_id,
            TeachingDemand.id != demand.id,
            TeachingDemand.accepted.is_(False),
            TeachingDemand.cancelled.is_(False),
        )
        .values(cancelled=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def apply_accepted_demand(db: Session, demand: TeachingDemand, student: User, teacher: User) -> None:
    """Cascade of an accepted demand: sibling demands cancelled, student.supervisor set, student added to teacher.supervised."""
    cancelled = cancel_sibling_demands(db, demand)
    student.supervisor_id = teacher.id
    supervised = teacher.supervised or []
    if all(s.id != student.id for s in supervised):
        teacher.supervised.append(student)
    db.flush()
    logger.info(
        "Supervision set: student=%s teacher=%s (cancelled %s sibling demand(s))",
        student.id, teacher.id, cancelled,
    )


def get_supervised_students(db: Session, teacher_id) -> list[User]:
    teacher = db.query(User).filter(User.id == teacher_id, User.is_deleted.is_(False)).first()
    if not teacher:
        return []
    return [s for s in teacher.supervised if not s.is_deleted]
