"""
Tasks: students work on tasks, their supervisor validates them (validated implies done).
"""
import logging
import uuid

from sqlalchemy.orm import Session

from app.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.task import Task
from app.models.user import User
from app.services.supervision import get_supervised_students
from app.services.users import get_active_user

logger = logging.getLogger(__name__)

TASK_NOT_FOUND_MSG = "No task found with that ID."


def _get_task(db: Session, task_id: uuid.UUID) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if not task:
        raise NotFoundError(TASK_NOT_FOUND_MSG)
    return task


def create_own_task(db: Session, student: User, title: str) -> Task:
    task = Task(title=title, performer_id=student.id)
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def create_student_task(db: Session, teacher: User, student_id: uuid.UUID, title: str) -> Task:
    student = get_active_user(db, student_id)
    if student.supervisor_id != teacher.id:
        raise ForbiddenError("You are not the supervisor of this student.")
    task = Task(title=title, performer_id=student.id)
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info("Task %s assigned by %s to %s", task.id, teacher.id, student.id)
    return task


def complete_task(db: Session, task_id: uuid.UUID, student: User) -> Task:
    task = _get_task(db, task_id)
    if task.performer_id != student.id:
        raise ForbiddenError("You are not the performer of the task.")
    task.done = True
    db.commit()
    db.refresh(task)
    return task


def validate_task(db: Session, task_id: uuid.UUID, teacher: User) -> Task:
    """Only the performer's current supervisor may validate, and only a done task."""
    task = _get_task(db, task_id)
    performer = db.query(User).filter(User.id == task.performer_id).first()
    if performer is None or performer.supervisor_id != teacher.id:
        raise ForbiddenError("You are not the supervisor of the student performing the task.")
    if not task.done:
        raise ValidationError("You can't validate a non-completed task.")
    task.validated = True
    task.validator_id = teacher.id
    db.commit()
    db.refresh(task)
    return task


def list_own_tasks(db: Session, student: User) -> list[Task]:
    return db.query(Task).filter(Task.performer_id == student.id).order_by(Task.created_at.desc()).all()


def list_validated_by(db: Session, teacher: User) -> list[Task]:
    return db.query(Task).filter(Task.validator_id == teacher.id).order_by(Task.created_at.desc()).all()


def list_supervised_tasks(db: Session, teacher: User, done: bool) -> list[Task]:
    """Not-yet-validated tasks of the teacher's students: done=True -> waiting for validation, False -> todo."""
    student_ids = [s.id for s in get_supervised_students(db, teacher.id)]
    if not student_ids:
        return []
    return (
        db.query(Task)
        .filter(Task.performer_id.in_(student_ids), Task.done.is_(done), Task.validated.is_(False))
        .order_by(Task.created_at.desc())
        .all()
    )
