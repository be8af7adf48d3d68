"""
Celery tasks for periodic maintenance. Use when Redis is available and a beat scheduler runs.
"""
import logging

from app.celery_app import celery_app
from app.jobs.tasks import run_purge_deleted_users

logger = logging.getLogger(__name__)


def purge_deleted_users_task() -> list[str]:
    """Celery task body: delegate to run_purge_deleted_users (same logic as startup)."""
    return [str(i) for i in run_purge_deleted_users()]


@celery_app.task(name="app.jobs.celery_tasks.purge_deleted_users")
def purge_deleted_users() -> list[str]:
    purged = purge_deleted_users_task()
    logger.info("Beat purge finished: %s account(s)", len(purged))
    return purged
