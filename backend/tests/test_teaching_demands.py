"""
Teaching-demand state machine and its supervision cascade.
Service functions are called directly against a session; races are simulated with a second session.
"""
import pytest
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError

from app import metrics
from app.database import SessionLocal
from app.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from app.models.teaching_demand import TeachingDemand
from app.models.user import User
from app.services import teaching_demands as td
from app.services.supervision import get_supervised_students


@pytest.fixture
def people(make_user):
    return {
        "student": make_user("student"),
        "teacher1": make_user("teacher"),
        "teacher2": make_user("teacher"),
    }


def test_send_creates_pending(db, people):
    demand = td.send_demand(db, people["student"], people["teacher1"].id)
    assert demand.state == "pending"
    assert demand.sender_id == people["student"].id


def test_only_students_send_and_only_to_teachers(db, people, make_user):
    with pytest.raises(ForbiddenError):
        td.send_demand(db, people["teacher1"], people["teacher2"].id)
    other_student = make_user("student")
    with pytest.raises(NotFoundError):
        td.send_demand(db, people["student"], other_student.id)


def test_duplicate_pending_and_accepted_demands_conflict(db, people):
    first = td.send_demand(db, people["student"], people["teacher1"].id)
    with pytest.raises(ConflictError) as exc:
        td.send_demand(db, people["student"], people["teacher1"].id)
    assert exc.value.message == td.PENDING_REQUEST_MSG

    td.accept_demand(db, first.id, people["teacher1"])
    with pytest.raises(ConflictError) as exc:
        td.send_demand(db, people["student"], people["teacher1"].id)
    assert exc.value.message == td.ALREADY_COLLABORATING_MSG


def test_student_with_mentor_cannot_ask_another_teacher(db, people):
    first = td.send_demand(db, people["student"], people["teacher1"].id)
    td.accept_demand(db, first.id, people["teacher1"])
    with pytest.raises(ConflictError) as exc:
        td.send_demand(db, people["student"], people["teacher2"].id)
    assert exc.value.message == td.MULTIPLE_MENTORS_MSG


def test_cancelled_demand_can_be_sent_again(db, people):
    first = td.send_demand(db, people["student"], people["teacher1"].id)
    td.cancel_demand(db, first.id, people["student"])
    again = td.send_demand(db, people["student"], people["teacher1"].id)
    assert again.id != first.id
    assert again.state == "pending"


def test_accept_applies_supervision_cascade(db, people):
    student, t1, t2 = people["student"], people["teacher1"], people["teacher2"]
    d1 = td.send_demand(db, student, t1.id)
    d2 = td.send_demand(db, student, t2.id)

    accepted = td.accept_demand(db, d1.id, t1)

    assert accepted.state == "accepted"
    db.expire_all()
    assert db.get(TeachingDemand, d2.id).cancelled is True
    assert db.get(User, student.id).supervisor_id == t1.id
    assert [s.id for s in get_supervised_students(db, t1.id)] == [student.id]
    assert get_supervised_students(db, t2.id) == []


def test_accept_guards(db, people, make_user):
    student, t1 = people["student"], people["teacher1"]
    with pytest.raises(NotFoundError):
        td.accept_demand(db, people["teacher2"].id, t1)

    demand = td.send_demand(db, student, t1.id)
    with pytest.raises(ForbiddenError):
        td.accept_demand(db, demand.id, people["teacher2"])

    td.accept_demand(db, demand.id, t1)
    with pytest.raises(InvalidStateError):
        td.accept_demand(db, demand.id, t1)
    with pytest.raises(InvalidStateError):
        td.cancel_demand(db, demand.id, student)


def test_cancelled_demand_is_terminal(db, people):
    demand = td.send_demand(db, people["student"], people["teacher1"].id)
    td.cancel_demand(db, demand.id, people["teacher1"])
    with pytest.raises(InvalidStateError):
        td.accept_demand(db, demand.id, people["teacher1"])
    with pytest.raises(InvalidStateError):
        td.cancel_demand(db, demand.id, people["student"])


def test_only_sender_or_receiver_cancels(db, people):
    demand = td.send_demand(db, people["student"], people["teacher1"].id)
    with pytest.raises(ForbiddenError):
        td.cancel_demand(db, demand.id, people["teacher2"])
    cancelled = td.cancel_demand(db, demand.id, people["student"])
    assert cancelled.state == "cancelled"
    db.expire_all()
    assert db.get(User, people["student"].id).supervisor_id is None


@pytest.mark.parametrize("first_accepted", [True, False])
@pytest.mark.parametrize("second_accepted", [True, False])
def test_two_teachers_matrix(db, people, first_accepted, second_accepted):
    """First demand pending|accepted x second demand (other teacher) accepted|left pending."""
    student, t1, t2 = people["student"], people["teacher1"], people["teacher2"]
    d1 = td.send_demand(db, student, t1.id)
    if first_accepted:
        td.accept_demand(db, d1.id, t1)
        with pytest.raises(ConflictError):
            td.send_demand(db, student, t2.id)
        mentor = t1
    else:
        d2 = td.send_demand(db, student, t2.id)
        if second_accepted:
            td.accept_demand(db, d2.id, t2)
            db.expire_all()
            assert db.get(TeachingDemand, d1.id).cancelled is True
            with pytest.raises(InvalidStateError):
                td.accept_demand(db, d1.id, t1)
            mentor = t2
        else:
            db.expire_all()
            assert db.get(TeachingDemand, d1.id).state == "pending"
            assert db.get(TeachingDemand, d2.id).state == "pending"
            mentor = None

    db.expire_all()
    me = db.get(User, student.id)
    assert me.supervisor_id == (mentor.id if mentor else None)
    accepted = db.query(TeachingDemand).filter(TeachingDemand.sender_id == student.id, TeachingDemand.accepted.is_(True)).count()
    assert accepted == (1 if mentor else 0)
    for teacher in (t1, t2):
        supervised = [s.id for s in get_supervised_students(db, teacher.id)]
        assert supervised == ([student.id] if mentor is not None and teacher.id == mentor.id else [])


def test_concurrent_accept_loser_gets_invalid_state(db, people):
    """Second session read the sibling demand as pending before the first accept committed."""
    student, t1, t2 = people["student"], people["teacher1"], people["teacher2"]
    d1 = td.send_demand(db, student, t1.id)
    d2 = td.send_demand(db, student, t2.id)

    other = SessionLocal()
    try:
        stale = other.query(TeachingDemand).filter(TeachingDemand.id == d2.id).one()
        assert stale.state == "pending"
        before = metrics.demand_accept_conflicts_total

        td.accept_demand(db, d1.id, t1)
        with pytest.raises(InvalidStateError):
            td.accept_demand(other, d2.id, other.get(User, t2.id))
        assert metrics.demand_accept_conflicts_total == before + 1
    finally:
        other.close()

    db.expire_all()
    assert db.get(User, student.id).supervisor_id == t1.id
    assert get_supervised_students(db, t2.id) == []


def test_accept_committed_during_send_refuses_the_new_demand(db, people):
    """Another session accepts the first demand after the send checks ran, just before the insert."""
    student, t1, t2 = people["student"], people["teacher1"], people["teacher2"]
    d1 = td.send_demand(db, student, t1.id)
    d1_id, t1_id = d1.id, t1.id

    def accept_elsewhere(session, flush_context, instances):
        other = SessionLocal()
        try:
            td.accept_demand(other, d1_id, other.get(User, t1_id))
        finally:
            other.close()

    event.listen(db, "before_flush", accept_elsewhere, once=True)
    with pytest.raises(ConflictError) as exc:
        td.send_demand(db, student, t2.id)
    assert exc.value.message == td.MULTIPLE_MENTORS_MSG

    db.expire_all()
    states = [d.state for d in db.query(TeachingDemand).filter(TeachingDemand.sender_id == student.id)]
    assert states == ["accepted"]
    assert db.get(User, student.id).supervisor_id == t1_id


def test_single_mentor_index_rejects_second_accepted_demand(db, people):
    student = people["student"]
    db.add(TeachingDemand(sender_id=student.id, receiver_id=people["teacher1"].id, accepted=True))
    db.commit()
    db.add(TeachingDemand(sender_id=student.id, receiver_id=people["teacher2"].id, accepted=True))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_accepted_and_cancelled_is_rejected_by_the_store(db, people):
    db.add(TeachingDemand(sender_id=people["student"].id, receiver_id=people["teacher1"].id, accepted=True, cancelled=True))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_list_and_lookup(db, people):
    student, t1, t2 = people["student"], people["teacher1"], people["teacher2"]
    td.send_demand(db, student, t1.id)
    d2 = td.send_demand(db, student, t2.id)

    sent = td.list_demands(db, student, {})
    assert sent.total == 2
    received = td.list_demands(db, t2, {})
    assert [d.id for d in received.items] == [d2.id]
    pending = td.list_demands(db, student, {"accepted": "false", "receiver": str(t1.id)})
    assert pending.total == 1

    assert td.get_demand_between(db, t2, student.id).id == d2.id
    assert td.get_demand_between(db, student, t2.id).id == d2.id
