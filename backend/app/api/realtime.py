"""
Realtime: GET /ws?token=<jwt> upgrades to a websocket that streams notification events as JSON.
The connection is registered in the SessionRegistry on app.state and removed on disconnect or shutdown.
"""
import asyncio
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from starlette.concurrency import run_in_threadpool

from app.api.deps import user_from_token
from app.database import SessionLocal
from app.services import notifications

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


def _authenticate(token: str | None) -> tuple[str, list[str]]:
    """Return (user id, contact ids) for a valid token; raises HTTPException 401 otherwise."""
    db = SessionLocal()
    try:
        user = user_from_token(db, token)
        return str(user.id), [str(c.id) for c in user.contacts]
    finally:
        db.close()


@router.websocket("/ws")
async def realtime(websocket: WebSocket, token: str | None = None):
    sessions = websocket.app.state.sessions
    notifier = websocket.app.state.notifier
    try:
        user_id, contact_ids = await run_in_threadpool(_authenticate, token)
    except HTTPException as e:
        logger.debug("Websocket rejected: %s", e.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    conn = sessions.register(user_id, queue, asyncio.get_running_loop())
    notifier.publish(notifications.USER_CONNECTED, {"user_id": user_id}, contact_ids)

    async def _pump():
        while True:
            event = await queue.get()
            if event is None:
                await websocket.close()
                return
            await websocket.send_json(jsonable_encoder(event))

    async def _drain():
        # Client frames are ignored; receiving is how a disconnect is noticed.
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return

    pump = asyncio.create_task(_pump())
    drain = asyncio.create_task(_drain())
    try:
        done, pending = await asyncio.wait({pump, drain}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Realtime connection %s closed on error: %s", conn.id, exc)
    finally:
        sessions.unregister(conn)
        notifier.publish(notifications.USER_DISCONNECTED, {"user_id": user_id}, contact_ids)
