"""
Message sequencer: conversation indices, retry on index conflicts, last message per counterpart, unread counters.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app import metrics
from app.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.message import Message
from app.models.types import conversation_key
from app.services import messages


@pytest.fixture
def pair(make_user):
    return make_user("student"), make_user("teacher")


def test_indices_count_the_conversation_not_the_sender(db, pair):
    a, b = pair
    senders = [a, b, a, a, b]
    sent = [messages.send_message(db, s, (b if s is a else a).id, content=f"hi {i}") for i, s in enumerate(senders)]
    assert [m.index_message for m in sent] == [1, 2, 3, 4, 5]
    assert len({m.pair_key for m in sent}) == 1


def test_conversations_are_numbered_independently(db, pair, make_user):
    a, b = pair
    c = make_user("teacher")
    messages.send_message(db, a, b.id, content="one")
    messages.send_message(db, a, b.id, content="two")
    first_with_c = messages.send_message(db, a, c.id, content="hello")
    assert first_with_c.index_message == 1
    assert messages.next_index(db, b.id, a.id) == 3


def test_payload_validation(db, pair, make_user):
    a, b = pair
    with pytest.raises(ValidationError):
        messages.send_message(db, a, b.id, content="   ")
    with pytest.raises(ValidationError):
        messages.send_message(db, a, b.id, content="x" * 256)
    with pytest.raises(ValidationError):
        messages.send_message(db, a, b.id, files=[f"f{i}.png" for i in range(11)])
    with pytest.raises(ValidationError):
        messages.send_message(db, a, a.id, content="me")
    with pytest.raises(NotFoundError):
        messages.send_message(db, a, uuid.uuid4(), content="nobody")
    admin = make_user("admin")
    with pytest.raises(NotFoundError):
        messages.send_message(db, a, admin.id, content="boss")

    only_files = messages.send_message(db, a, b.id, files=["report.pdf", "photo.jpg"])
    assert only_files.content is None
    assert only_files.files == ["report.pdf", "photo.jpg"]
    trimmed = messages.send_message(db, a, b.id, content="  padded  ")
    assert trimmed.content == "padded"


def test_index_conflict_is_retried(db, pair, monkeypatch):
    a, b = pair
    messages.send_message(db, a, b.id, content="first")
    real_next_index = messages.next_index
    calls = []

    def stale_then_real(session, user_a, user_b):
        calls.append(1)
        # first attempt reads a stale max and collides with index 1
        return 1 if len(calls) == 1 else real_next_index(session, user_a, user_b)

    monkeypatch.setattr(messages, "next_index", stale_then_real)
    before = metrics.message_index_conflicts_total

    message = messages.send_message(db, b, a.id, content="second")

    assert message.index_message == 2
    assert len(calls) == 2
    assert metrics.message_index_conflicts_total == before + 1


def test_index_conflict_gives_up_after_max_attempts(db, pair, monkeypatch):
    a, b = pair
    messages.send_message(db, a, b.id, content="first")
    monkeypatch.setattr(messages.settings, "message_index_max_attempts", 3)
    calls = []

    def always_one(session, user_a, user_b):
        calls.append(1)
        return 1

    monkeypatch.setattr(messages, "next_index", always_one)
    with pytest.raises(ConflictError):
        messages.send_message(db, a, b.id, content="lost")
    assert len(calls) == 3
    assert db.query(Message).count() == 1


def test_foreign_key_failure_is_not_retried(db, pair, monkeypatch):
    from types import SimpleNamespace

    from sqlalchemy.exc import IntegrityError

    a, _ = pair
    calls = []
    real_next_index = messages.next_index

    def counting(session, user_a, user_b):
        calls.append(1)
        return real_next_index(session, user_a, user_b)

    # receiver removed between the lookup and the insert
    monkeypatch.setattr(messages, "get_active_user", lambda session, user_id: SimpleNamespace(id=uuid.uuid4()))
    monkeypatch.setattr(messages, "next_index", counting)
    before = metrics.message_index_conflicts_total

    with pytest.raises(IntegrityError):
        messages.send_message(db, a, uuid.uuid4(), content="hello")
    assert len(calls) == 1
    assert metrics.message_index_conflicts_total == before
    assert db.query(Message).count() == 0


def _msg(sender, receiver, sent, index):
    return Message(
        id=uuid.uuid4(),
        sender_id=sender,
        receiver_id=receiver,
        pair_key=conversation_key(sender, receiver),
        content="x",
        files=[],
        sent=sent,
        index_message=index,
        read=False,
    )


def test_latest_by_counterpart_merges_both_directions():
    me, alice, bob = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    t0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    rows = [
        _msg(me, alice, t0, 1),
        _msg(alice, me, t0 + timedelta(minutes=5), 2),   # latest with alice, written by alice
        _msg(me, alice, t0 + timedelta(minutes=1), 3),
        _msg(bob, me, t0 + timedelta(minutes=2), 1),
        _msg(me, bob, t0 + timedelta(minutes=10), 2),    # latest overall, written by me
    ]

    latest = messages.latest_by_counterpart(me, rows)

    assert [(m.counterpart_id(me), m.sent) for m in latest] == [
        (bob, t0 + timedelta(minutes=10)),
        (alice, t0 + timedelta(minutes=5)),
    ]


def test_latest_by_counterpart_breaks_sent_ties_with_index():
    me, alice = uuid.uuid4(), uuid.uuid4()
    t0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    rows = [_msg(me, alice, t0, 1), _msg(alice, me, t0, 2)]
    [latest] = messages.latest_by_counterpart(me, rows)
    assert latest.index_message == 2


def test_last_message_queries(db, pair, make_user):
    a, b = pair
    c = make_user("teacher")
    messages.send_message(db, a, b.id, content="to b")
    messages.send_message(db, c, a.id, content="from c")
    reply = messages.send_message(db, b, a.id, content="b replies")

    latest = messages.last_message_per_counterpart(db, a)
    assert len(latest) == 2
    assert latest[0].id == reply.id
    assert latest[1].content == "from c"
    assert messages.last_message_with(db, a, b.id).id == reply.id
    assert messages.last_message_with(db, b, c.id) is None


def test_unread_and_mark_read(db, pair, make_user):
    a, b = pair
    c = make_user("teacher")
    m1 = messages.send_message(db, b, a.id, content="1")
    messages.send_message(db, b, a.id, content="2")
    messages.send_message(db, c, a.id, content="3")

    assert messages.unread_count(db, a) == 3
    assert messages.unread_count(db, a, from_sender=b.id) == 2
    with pytest.raises(ForbiddenError):
        messages.mark_read(db, m1.id, b)
    with pytest.raises(NotFoundError):
        messages.mark_read(db, uuid.uuid4(), a)
    assert messages.mark_read(db, m1.id, a).read is True
    assert messages.unread_count(db, a, from_sender=b.id) == 1


def test_conversation_page_newest_first(db, pair):
    a, b = pair
    for i in range(12):
        messages.send_message(db, a if i % 2 else b, (b if i % 2 else a).id, content=str(i))
    page = messages.get_conversation(db, a, b.id, {"limit": "5"})
    assert page.total == 12
    assert [m.index_message for m in page.items] == [12, 11, 10, 9, 8]
    last = messages.get_conversation(db, b, a.id, {"limit": "5", "page": "3"})
    assert [m.index_message for m in last.items] == [2, 1]
