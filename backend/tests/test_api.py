"""
API tests: auth flow with real tokens, then routers with get_current_user overridden (login_as fixture).
Uses FastAPI TestClient; notifications are captured by the RecordingNotifier from conftest.
"""
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.models.user import User
from app.services import notifications
from app.services.auth import create_access_token, hash_link_token

STRONG_PASSWORD = "Str0ng!pass"


def _register(client, **overrides):
    body = {
        "email": "New.User@Example.com",
        "username": "  NewUser ",
        "firstname": "New",
        "lastname": "User",
        "password": STRONG_PASSWORD,
        "password_confirm": STRONG_PASSWORD,
        "role": "student",
    }
    body.update(overrides)
    return client.post("/auth/register", json=body)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_register_confirm_login_me(client, monkeypatch):
    import app.api.auth as auth_module
    monkeypatch.setattr(auth_module, "create_link_token", lambda: ("link-token", hash_link_token("link-token")))

    r = _register(client)
    assert r.status_code == 201, r.text
    assert r.json()["username"] == "newuser"
    assert r.json()["email"] == "new.user@example.com"

    creds = {"email": "new.user@example.com", "password": STRONG_PASSWORD}
    assert client.post("/auth/login", json=creds).status_code == 403
    assert client.get("/auth/confirm/wrong").status_code == 404
    assert client.get("/auth/confirm/link-token").status_code == 200

    r = client.post("/auth/login", json=creds)
    assert r.status_code == 200, r.text
    token = r.json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["role"] == "student"

    assert client.post("/auth/login", json={**creds, "password": "Wr0ng!pass"}).status_code == 401


def test_register_rejects_duplicates_and_weak_passwords(client, make_user):
    make_user("teacher", username="taken")
    assert _register(client, username="taken").status_code == 409
    assert _register(client, password="weakpass", password_confirm="weakpass").status_code == 422
    assert _register(client, password_confirm="Other!pass1").status_code == 422
    assert _register(client, role="admin").status_code == 422
    assert _register(client, username="abc").status_code == 422


def test_missing_or_bad_token_is_401(client):
    assert client.get("/users").status_code == 401
    assert client.get("/users", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_soft_deleted_token_is_rejected(client, db, make_user):
    from app.services import users

    student = make_user("student")
    token = create_access_token(student.id, student.role)
    users.soft_delete(db, student)
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_demand_flow_over_http(client, notifier, login_as, db, make_user):
    student, teacher, rival = make_user("student"), make_user("teacher"), make_user("teacher")

    login_as(student)
    r = client.post(f"/teaching-demands/user/{teacher.id}")
    assert r.status_code == 201, r.text
    demand_id = r.json()["id"]
    assert r.json()["state"] == "pending"
    client.post(f"/teaching-demands/user/{rival.id}")
    assert client.post(f"/teaching-demands/{demand_id}/accept").status_code == 403

    r = client.post(f"/teaching-demands/user/{teacher.id}")
    assert r.status_code == 409
    assert r.json() == {
        "status": "fail",
        "kind": "conflict",
        "detail": "There is a pending teaching request sent to this teacher.",
    }

    login_as(teacher)
    r = client.post(f"/teaching-demands/{demand_id}/accept")
    assert r.status_code == 200, r.text
    assert r.json()["state"] == "accepted"
    r = client.post(f"/teaching-demands/{demand_id}/accept")
    assert r.status_code == 409
    assert r.json()["kind"] == "invalid_state"

    r = client.get("/users/me/supervised")
    assert [u["id"] for u in r.json()["items"]] == [str(student.id)]

    login_as(student)
    r = client.get("/teaching-demands", params={"sort": "sent"})
    assert [d["state"] for d in r.json()["items"]] == ["accepted", "cancelled"]
    r = client.get(f"/teaching-demands/user/{rival.id}")
    assert r.json()["teaching_demand"]["state"] == "cancelled"

    [sent_event] = notifier.of_type(notifications.DEMAND_ACCEPTED)
    assert sent_event[2] == {str(student.id)}
    assert len(notifier.of_type(notifications.DEMAND_SENT)) == 2


def test_messages_over_http(client, notifier, login_as, make_user):
    alice, bob = make_user("student"), make_user("teacher")
    login_as(alice)
    for i in range(3):
        r = client.post(f"/messages/{bob.id}", json={"content": f"msg {i}"})
        assert r.status_code == 201, r.text
    assert r.json()["index_message"] == 3
    assert client.post(f"/messages/{bob.id}", json={"content": ""}).status_code == 400

    r = client.get(f"/messages/{bob.id}", params={"limit": "2", "fields": "content"})
    body = r.json()
    assert body["total"] == 3
    assert [sorted(row) for row in body["items"]] == [["content", "id"], ["content", "id"]]
    assert [row["content"] for row in body["items"]] == ["msg 2", "msg 1"]
    r = client.get(f"/messages/{bob.id}", params={"limit": "2", "page": "3"})
    assert r.status_code == 404
    assert r.json()["detail"] == "This page doesn't exist."
    assert client.get(f"/messages/{bob.id}", params={"page": "two"}).status_code == 400

    login_as(bob)
    assert client.get("/messages/unread").json() == {"count": 3}
    last = client.get("/messages/last").json()["items"]
    assert len(last) == 1
    assert last[0]["counterpart"]["id"] == str(alice.id)
    assert last[0]["content"] == "msg 2"
    r = client.patch(f"/messages/{last[0]['id']}/read")
    assert r.json()["read"] is True
    assert client.get(f"/messages/unread/{alice.id}").json() == {"count": 2}

    assert len(notifier.of_type(notifications.MESSAGE_SENT)) == 3


def test_users_and_contacts_over_http(client, notifier, login_as, db, make_user):
    alice = make_user("student", username="alice")
    bob = make_user("teacher", username="bobby")
    admin = make_user("admin", username="admin")

    login_as(alice)
    r = client.get("/users", params={"fields": "username"})
    assert r.json()["items"] == [{"id": str(bob.id), "username": "bobby"}]
    assert client.get(f"/users/{admin.id}").status_code == 404
    assert client.post(f"/users/{bob.id}/invitation").json()["message"] == "Invitation sent."
    assert notifier.of_type(notifications.INVITATION_SENT)[0][2] == {str(bob.id)}
    assert client.patch(f"/users/{bob.id}/role", json={"role": "admin"}).status_code == 403

    login_as(bob)
    r = client.post(f"/users/{alice.id}/contact")
    assert [u["username"] for u in r.json()["items"]] == ["alice"]
    assert client.get(f"/users/{alice.id}/status").json() == {"connected": False}

    login_as(admin)
    r = client.patch(f"/users/{bob.id}/role", json={"role": "student"})
    assert r.json()["role"] == "student"

    login_as(alice)
    assert client.delete("/users/me").status_code == 204
    db.expire_all()
    assert db.get(User, alice.id).is_deleted is True


def test_profile_updates_over_http(client, login_as, make_user):
    student = make_user("student", username="student_one")
    admin = make_user("admin")

    login_as(student)
    r = client.patch("/users/me", json={"username": " Student_Two ", "firstname": "Grace"})
    assert r.status_code == 200, r.text
    assert (r.json()["username"], r.json()["firstname"]) == ("student_two", "Grace")
    r = client.patch("/users/me", json={"password": STRONG_PASSWORD})
    assert r.status_code == 400
    assert r.json()["detail"] == "Use the reset password mechanisms to update the password."
    assert client.patch("/users/me", json={"role": "teacher"}).status_code == 400
    assert client.patch("/users/me", json={"email": "not-an-email"}).status_code == 422
    assert client.patch(f"/users/{student.id}", json={"lastname": "Hopper"}).status_code == 403

    login_as(admin)
    r = client.patch(f"/users/{student.id}", json={"lastname": "Hopper"})
    assert r.status_code == 200, r.text
    assert r.json()["lastname"] == "Hopper"
    assert client.patch(f"/users/{student.id}", json={"username": admin.username}).status_code == 409
    assert client.patch(f"/users/{admin.id}", json={"lastname": "Self"}).status_code == 404


def test_list_endpoints_project_every_requested_field(client, login_as, db, make_user):
    from app.services import messages, teaching_demands

    student, teacher = make_user("student"), make_user("teacher")
    teaching_demands.send_demand(db, student, teacher.id)
    messages.send_message(db, student, teacher.id, "hi")

    login_as(student)
    r = client.get(f"/messages/{teacher.id}", params={"fields": "sender,receiver,content"})
    assert r.json()["items"] == [{"id": r.json()["items"][0]["id"], "sender": str(student.id), "receiver": str(teacher.id), "content": "hi"}]
    r = client.get("/teaching-demands", params={"fields": "created_at"})
    assert sorted(r.json()["items"][0]) == ["created_at", "id"]
    r = client.get("/users", params={"fields": "email,createdAt"})
    assert sorted(r.json()["items"][0]) == ["created_at", "email", "id"]


def test_events_and_tasks_over_http(client, notifier, login_as, db, make_user):
    from app.services import teaching_demands

    student, teacher = make_user("student"), make_user("teacher")
    demand = teaching_demands.send_demand(db, student, teacher.id)
    teaching_demands.accept_demand(db, demand.id, teacher)

    login_as(teacher)
    r = client.post(
        "/events",
        json={
            "title": "Review",
            "description": "Weekly review",
            "beginning": "2024-03-14T10:00:00Z",
            "end": "2024-03-14T11:00:00Z",
            "guests": [str(student.id)],
        },
    )
    assert r.status_code == 201, r.text
    event_id = r.json()["id"]
    r = client.get("/events/calendar/week", params={"date": "2024-03-14"})
    assert [e["id"] for e in r.json()["items"]] == [event_id]
    assert client.get("/events/calendar/decade").status_code == 400
    r = client.post(f"/tasks/students/{student.id}", json={"title": "Exercise 1"})
    assert r.status_code == 201, r.text
    task_id = r.json()["id"]

    login_as(student)
    r = client.post(f"/events/{event_id}/accept")
    assert [u["id"] for u in r.json()["attendees"]] == [str(student.id)]
    r = client.patch(f"/tasks/{task_id}/complete")
    assert r.json()["done"] is True
    assert notifier.of_type(notifications.TASK_COMPLETED)[0][2] == {str(teacher.id)}

    login_as(teacher)
    assert [t["id"] for t in client.get("/tasks/students/done").json()["items"]] == [task_id]
    r = client.patch(f"/tasks/{task_id}/validate")
    assert r.json()["validated"] is True
    assert client.delete(f"/events/{event_id}").status_code == 204
    assert notifier.of_type(notifications.EVENT_DELETED)[0][2] == {str(student.id)}


def test_websocket_receives_notifications(make_user):
    from app.main import app

    user = make_user("student")
    token = create_access_token(user.id, user.role)
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws?token=bad") as ws:
                ws.receive_json()

        with client.websocket_connect(f"/ws?token={token}") as ws:
            registry = app.state.sessions
            for _ in range(100):
                if registry.is_connected(user.id):
                    break
                time.sleep(0.01)
            assert registry.is_connected(user.id)
            app.state.notifier.publish(notifications.TASK_CREATED, {"title": "Read"}, [user.id])
            event = ws.receive_json()
            assert event["type"] == notifications.TASK_CREATED
            assert event["data"] == {"title": "Read"}
