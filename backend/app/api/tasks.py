"""
Tasks API: students keep their own task list, their supervisor assigns and validates.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_notifier, require_roles
from app.api.serializers import task_to_dict
from app.database import get_db
from app.models.user import User
from app.schemas.task import TaskCreateRequest, TaskListResponse, TaskResponse
from app.services import notifications, tasks
from app.services.notifications import NotificationBus

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


def _items(rows) -> dict:
    return {"items": [task_to_dict(t) for t in rows]}


@router.get("", response_model=TaskListResponse)
def my_tasks(db: Session = Depends(get_db), current_user: User = Depends(require_roles("student"))):
    return _items(tasks.list_own_tasks(db, current_user))


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    data: TaskCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("student")),
):
    return task_to_dict(tasks.create_own_task(db, current_user, data.title))


@router.get("/students/validated", response_model=TaskListResponse)
def validated_tasks(db: Session = Depends(get_db), current_user: User = Depends(require_roles("teacher"))):
    """Tasks you validated."""
    return _items(tasks.list_validated_by(db, current_user))


@router.get("/students/done", response_model=TaskListResponse)
def done_tasks(db: Session = Depends(get_db), current_user: User = Depends(require_roles("teacher"))):
    """Tasks of your students waiting for validation."""
    return _items(tasks.list_supervised_tasks(db, current_user, done=True))


@router.get("/students/todo", response_model=TaskListResponse)
def todo_tasks(db: Session = Depends(get_db), current_user: User = Depends(require_roles("teacher"))):
    return _items(tasks.list_supervised_tasks(db, current_user, done=False))


@router.post("/students/{student_id}", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def assign_task(
    student_id: uuid.UUID,
    data: TaskCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("teacher")),
    notifier: NotificationBus = Depends(get_notifier),
):
    task = tasks.create_student_task(db, current_user, student_id, data.title)
    body = task_to_dict(task)
    notifier.publish(notifications.TASK_CREATED, body, [task.performer_id])
    return body


@router.patch("/{task_id}/complete", response_model=TaskResponse)
def complete_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("student")),
    notifier: NotificationBus = Depends(get_notifier),
):
    task = tasks.complete_task(db, task_id, current_user)
    body = task_to_dict(task)
    notifier.publish(notifications.TASK_COMPLETED, body, [current_user.supervisor_id])
    return body


@router.patch("/{task_id}/validate", response_model=TaskResponse)
def validate_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("teacher")),
    notifier: NotificationBus = Depends(get_notifier),
):
    task = tasks.validate_task(db, task_id, current_user)
    body = task_to_dict(task)
    notifier.publish(notifications.TASK_VALIDATED, body, [task.performer_id])
    return body
