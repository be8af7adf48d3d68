"""
Session registry: which users currently hold a realtime connection, and their outbound queues.
One instance per process lives on app.state and is injected; swap it for a shared registry
(e.g. Redis-backed) when running more than one worker.
"""
import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    user_id: str
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class SessionRegistry:
    """Register on connect, unregister on disconnect, close_all on shutdown."""

    def __init__(self):
        self._connections: dict[str, list[Connection]] = {}
        self._lock = threading.Lock()

    def register(self, user_id, queue: asyncio.Queue, loop: asyncio.AbstractEventLoop) -> Connection:
        conn = Connection(user_id=str(user_id), queue=queue, loop=loop)
        with self._lock:
            self._connections.setdefault(conn.user_id, []).append(conn)
        logger.info("User connected: %s (connection %s)", conn.user_id, conn.id)
        return conn

    def unregister(self, conn: Connection) -> None:
        with self._lock:
            conns = self._connections.get(conn.user_id, [])
            if conn in conns:
                conns.remove(conn)
            if not conns:
                self._connections.pop(conn.user_id, None)
        logger.info("User disconnected: %s (connection %s)", conn.user_id, conn.id)

    def is_connected(self, user_id) -> bool:
        with self._lock:
            return bool(self._connections.get(str(user_id)))

    def connected_users(self) -> list[str]:
        with self._lock:
            return sorted(self._connections)

    def deliver(self, user_id, event: dict) -> int:
        """Queue event on every connection of user_id; safe to call from worker threads. Returns connections reached."""
        with self._lock:
            conns = list(self._connections.get(str(user_id), []))
        for conn in conns:
            conn.loop.call_soon_threadsafe(conn.queue.put_nowait, event)
        return len(conns)

    def close_all(self) -> None:
        with self._lock:
            conns = [c for cs in self._connections.values() for c in cs]
            self._connections.clear()
        for conn in conns:
            # None tells the websocket writer loop to stop
            if not conn.loop.is_closed():
                conn.loop.call_soon_threadsafe(conn.queue.put_nowait, None)
        if conns:
            logger.info("Session registry closed %s connection(s)", len(conns))
