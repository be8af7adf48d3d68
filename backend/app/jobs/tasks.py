"""
Background jobs. run_purge_deleted_users removes self-deleted accounts whose grace period is over.
The due time is persisted on the user (purge_after), so a restart never loses a scheduled deletion:
the job runs at startup, on the Celery beat schedule, and can be re-run any time.
"""
import logging
import uuid
from datetime import datetime

from app.database import SessionLocal
from app.services.users import purge_deleted_users

logger = logging.getLogger(__name__)


def run_purge_deleted_users(now: datetime | None = None) -> list[uuid.UUID]:
    """Open a session, purge due accounts, return their ids."""
    db = SessionLocal()
    try:
        purged = purge_deleted_users(db, now=now)
        if purged:
            logger.info("run_purge_deleted_users: purged %s", ", ".join(str(i) for i in purged))
        return purged
    except Exception:
        db.rollback()
        logger.exception("run_purge_deleted_users failed")
        raise
    finally:
        db.close()
