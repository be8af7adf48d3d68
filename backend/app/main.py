"""
FastAPI application entrypoint.
Run with: uvicorn app.main:app --reload --port 8000

API base path: routes are mounted at root (no /api/v1 prefix).
  - Auth:  POST /auth/register, GET /auth/confirm/{token}, POST /auth/login, GET /auth/me
  - Users: GET /users, GET|DELETE /users/me, contacts/invitations, GET /users/{id}/status, admin role/delete
  - Teaching demands: GET /teaching-demands, GET|POST /teaching-demands/user/{id}, POST /teaching-demands/{id}/accept|cancel
  - Messages: GET|POST /messages/{user_id}, GET /messages/last, GET /messages/unread, PATCH /messages/{id}/read
  - Events: GET|POST /events, GET /events/calendar/{period}, GET|PATCH|DELETE /events/{id}, POST /events/{id}/accept|decline
  - Tasks: GET|POST /tasks, GET /tasks/students/{validated,done,todo}, POST /tasks/students/{id}, PATCH /tasks/{id}/complete|validate
  - Realtime: websocket /ws?token=<jwt>

Celery: optional; set CELERY_BROKER_URL and run worker + beat to purge self-deleted accounts on a schedule
(celery -A app.celery_app worker -B -l info). The purge also runs at startup.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.errors import AppError
from app.api.auth import router as auth_router
from app.api.events import router as events_router
from app.api.messages import router as messages_router
from app.api.realtime import router as realtime_router
from app.api.tasks import router as tasks_router
from app.api.teaching_demands import router as teaching_demands_router
from app.api.users import router as users_router
from app.services.notifications import NotificationBus
from app.services.sessions import SessionRegistry

logger = logging.getLogger("app.main")

app = FastAPI(
    title="Learn@Home API",
    description="Mentoring platform API: students, teachers, teaching demands, messages, events and tasks.",
    version="0.1.0",
)

_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins if _origins else ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One registry per process; routers reach it through app.state (see app.api.deps).
app.state.sessions = SessionRegistry()
app.state.notifier = NotificationBus(app.state.sessions)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(teaching_demands_router)
app.include_router(messages_router)
app.include_router(events_router)
app.include_router(tasks_router)
app.include_router(realtime_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    detail = "Something went wrong. Try again!"
    if getattr(settings, "debug", False):
        detail = f"{type(exc).__name__}: {exc}"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"status": "error", "detail": detail},
    )


@app.on_event("startup")
def startup():
    """Init SQLite DB and purge accounts whose deletion came due while we were down. Fail fast on default SECRET_KEY in production."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if settings.is_production:
        if (getattr(settings, "secret_key", "") or "").strip() == "change-me-in-production":
            logger.critical("SECRET_KEY must be set in production. Set SECRET_KEY in env or .env.")
            raise RuntimeError("SECRET_KEY must be set in production. Set SECRET_KEY in env or .env.")
    from app.database import init_db
    init_db()
    from app.jobs.tasks import run_purge_deleted_users
    try:
        purged = run_purge_deleted_users()
        if purged:
            logger.warning("Startup: purged %s deleted account(s)", len(purged))
    except Exception as e:
        logger.warning("Startup: could not purge deleted accounts (run: alembic upgrade head): %s", e)


@app.on_event("shutdown")
def shutdown():
    app.state.sessions.close_all()


@app.get("/health")
def health():
    """Health check (JSON)."""
    return {"status": "ok", "message": "Learn@Home API", "connected_users": len(app.state.sessions.connected_users())}
