"""
Session registry and notification bus: delivery to connected users only, failures never raised.
"""
import asyncio

import pytest

from app import metrics
from app.services import notifications
from app.services.notifications import NotificationBus
from app.services.sessions import SessionRegistry


@pytest.fixture
def loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


def _drain(loop, queue):
    # call_soon_threadsafe callbacks run on the next loop iteration
    loop.run_until_complete(asyncio.sleep(0))
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


def test_register_and_unregister(loop):
    registry = SessionRegistry()
    conn = registry.register("u1", asyncio.Queue(), loop)
    second = registry.register("u1", asyncio.Queue(), loop)
    assert registry.is_connected("u1")
    assert registry.connected_users() == ["u1"]
    registry.unregister(conn)
    assert registry.is_connected("u1")
    registry.unregister(second)
    assert not registry.is_connected("u1")
    assert registry.connected_users() == []


def test_publish_reaches_connected_recipients_once(loop):
    registry = SessionRegistry()
    bus = NotificationBus(registry)
    queue = asyncio.Queue()
    registry.register("u1", queue, loop)

    bus.publish(notifications.MESSAGE_SENT, {"id": "m1"}, ["u1", "u1", "offline", None])

    [event] = _drain(loop, queue)
    assert event["type"] == notifications.MESSAGE_SENT
    assert event["data"] == {"id": "m1"}
    assert "at" in event
    assert bus.published == 1


def test_delivery_failure_is_logged_and_counted(loop, monkeypatch):
    registry = SessionRegistry()
    bus = NotificationBus(registry)

    def broken(user_id, event):
        raise RuntimeError("socket gone")

    monkeypatch.setattr(registry, "deliver", broken)
    before = metrics.notification_failures_total
    bus.publish(notifications.TASK_CREATED, {}, ["u1", "u2"])
    assert metrics.notification_failures_total == before + 2


def test_close_all_signals_every_connection(loop):
    registry = SessionRegistry()
    q1, q2 = asyncio.Queue(), asyncio.Queue()
    registry.register("u1", q1, loop)
    registry.register("u2", q2, loop)
    registry.close_all()
    assert _drain(loop, q1) == [None]
    assert _drain(loop, q2) == [None]
    assert registry.connected_users() == []
