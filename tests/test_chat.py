import pytest

from tutor.chat import hub
from tutor.config import settings


@pytest.fixture
def room(seed):
    teacher = seed.user("teacher", teacher_code="TEACH001")
    course = seed.course(teacher)
    lesson = seed.lesson(course, summary="Cells have membranes.")
    student = seed.user("student")
    seed.enroll(course, student)
    session = seed.chat_session(lesson, student)
    return {"lesson": lesson, "student": student, "session": session, "course": course}


def add_message(seed, session_id: int, role: str, content: str, at: str) -> int:
    return seed._insert(
        "INSERT INTO messages (chat_session_id, role, content, created_at) VALUES (?, ?, ?, ?)",
        (session_id, role, content, at),
    )


def connect(client, session_id: int, user_id: int):
    return client.websocket_connect(f"/ws/chat/{session_id}?user_id={user_id}")


def test_send_message_broadcasts_user_then_assistant(client, seed, room, fake_tutor):
    with connect(client, room["session"], room["student"]) as ws:
        assert ws.receive_json() == {"type": "joined", "chat_session_id": room["session"]}

        ws.send_json({"type": "send_message", "content": "What is a cell?"})
        first = ws.receive_json()
        second = ws.receive_json()

    assert first["type"] == "receive_message"
    assert (first["role"], first["content"]) == ("user", "What is a cell?")
    assert second["type"] == "receive_message"
    assert (second["role"], second["content"]) == (
        "assistant",
        "Cells are the basic unit of life.",
    )
    assert first["id"] < second["id"]

    rows = seed.all(
        "SELECT role, content FROM messages WHERE chat_session_id = ? ORDER BY id",
        (room["session"],),
    )
    assert [(r["role"], r["content"]) for r in rows] == [
        ("user", "What is a cell?"),
        ("assistant", "Cells are the basic unit of life."),
    ]

    lesson, history, message = fake_tutor.calls[0]
    assert lesson["summary"] == "Cells have membranes."
    assert lesson["raw_transcript"] == "Today we look at cells."
    assert history == []
    assert message == "What is a cell?"


def test_history_passed_oldest_first(client, seed, room, fake_tutor):
    add_message(seed, room["session"], "user", "Hi", "2025-03-10T09:00:00.000000Z")
    add_message(seed, room["session"], "assistant", "Hello!", "2025-03-10T09:00:01.000000Z")

    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        ws.send_json({"type": "send_message", "content": "Next question"})
        ws.receive_json()
        ws.receive_json()

    _, history, _ = fake_tutor.calls[0]
    assert history == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello!"},
    ]


def test_history_is_bounded(client, seed, room, fake_tutor, monkeypatch):
    monkeypatch.setattr(settings, "chat_history_limit", 2)
    for i in range(5):
        add_message(seed, room["session"], "user", f"m{i}", f"2025-03-10T09:00:0{i}.000000Z")

    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        ws.send_json({"type": "send_message", "content": "latest"})
        ws.receive_json()
        ws.receive_json()

    _, history, _ = fake_tutor.calls[0]
    assert [m["content"] for m in history] == ["m3", "m4"]


def test_every_socket_in_room_receives_messages(client, room):
    with connect(client, room["session"], room["student"]) as sender, connect(
        client, room["session"], room["student"]
    ) as watcher:
        sender.receive_json()
        watcher.receive_json()
        assert hub.connections(room["session"]) == 2

        sender.send_json({"type": "send_message", "content": "Anyone there?"})

        for ws in (sender, watcher):
            assert ws.receive_json()["role"] == "user"
            assert ws.receive_json()["role"] == "assistant"

    assert hub.connections(room["session"]) == 0


def test_limit_reached(client, seed, room, fake_tutor, monkeypatch):
    monkeypatch.setattr(settings, "max_messages_per_chat", 2)
    add_message(seed, room["session"], "user", "Hi", "2025-03-10T09:00:00.000000Z")
    add_message(seed, room["session"], "assistant", "Hello!", "2025-03-10T09:00:01.000000Z")

    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        ws.send_json({"type": "send_message", "content": "One more?"})
        error = ws.receive_json()

    assert error["type"] == "message_error"
    assert error["code"] == "LIMIT_REACHED"
    assert error["limit"] == 2
    assert fake_tutor.calls == []
    assert seed.one("SELECT COUNT(*) AS n FROM messages")["n"] == 2


def test_generation_failure_keeps_user_message(client, seed, room, fake_tutor):
    fake_tutor.error = RuntimeError("model unavailable")

    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        ws.send_json({"type": "send_message", "content": "What is a cell?"})
        assert ws.receive_json()["role"] == "user"
        error = ws.receive_json()

    assert error == {
        "type": "message_error",
        "error": "Failed to generate response",
        "code": "GENERATION_FAILED",
    }
    rows = seed.all("SELECT role FROM messages")
    assert [r["role"] for r in rows] == ["user"]


def test_empty_reply_is_generation_failure(client, room, fake_tutor):
    fake_tutor.reply_text = ""

    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        ws.send_json({"type": "send_message", "content": "What is a cell?"})
        ws.receive_json()
        assert ws.receive_json()["code"] == "GENERATION_FAILED"


@pytest.mark.parametrize(
    "event",
    [
        {"type": "typing"},
        {"type": "send_message"},
        {"type": "send_message", "content": "   "},
        {"type": "send_message", "content": "x" * 5001},
        ["send_message"],
    ],
)
def test_invalid_events_are_rejected(client, room, fake_tutor, event):
    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        ws.send_json(event)
        error = ws.receive_json()

    assert error["code"] == "INVALID_MESSAGE"
    assert fake_tutor.calls == []


def test_non_json_frame_is_rejected(client, room):
    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        ws.send_text("hello?")
        assert ws.receive_json()["code"] == "INVALID_MESSAGE"


def test_session_deleted_mid_chat(client, seed, room, fake_tutor):
    with connect(client, room["session"], room["student"]) as ws:
        ws.receive_json()
        # Deleting the lesson takes its chat sessions with it.
        seed.conn.execute("DELETE FROM lessons WHERE id = ?", (room["lesson"],))
        seed.conn.commit()

        ws.send_json({"type": "send_message", "content": "Still there?"})
        error = ws.receive_json()

        assert error["type"] == "message_error"
        assert error["code"] == "SESSION_NOT_FOUND"

        # The socket stays usable after the error.
        ws.send_json({"type": "typing"})
        assert ws.receive_json()["code"] == "INVALID_MESSAGE"

    assert fake_tutor.calls == []
    assert seed.one("SELECT COUNT(*) AS n FROM messages")["n"] == 0


def test_other_students_session_is_denied(client, seed, room):
    intruder = seed.user("student")
    seed.enroll(room["course"], intruder)

    with connect(client, room["session"], intruder) as ws:
        error = ws.receive_json()

    assert error["type"] == "message_error"
    assert error["code"] == "ACCESS_DENIED"


def test_unknown_session(client, room):
    with connect(client, 9999, room["student"]) as ws:
        assert ws.receive_json()["code"] == "SESSION_NOT_FOUND"


def test_teacher_cannot_join_chat(client, seed, room):
    teacher = seed.one("SELECT id FROM users WHERE role = 'teacher'")["id"]

    with connect(client, room["session"], teacher) as ws:
        assert ws.receive_json()["code"] == "ACCESS_DENIED"


# ------------------------------------------------------------------
# REST side of chat sessions
# ------------------------------------------------------------------


def test_create_and_list_chat_sessions(client, seed, room):
    headers = {"X-User-Id": str(room["student"])}

    created = client.post(
        "/api/student/chat-sessions", json={"lessonId": room["lesson"]}, headers=headers
    )
    assert created.status_code == 201
    assert created.json()["name"] == "Chat 2"

    add_message(seed, room["session"], "user", "Hi", "2025-03-10T09:00:00.000000Z")
    sessions = client.get(
        "/api/student/chat-sessions", params={"lesson_id": room["lesson"]}, headers=headers
    ).json()
    assert [(s["name"], s["message_count"]) for s in sessions] == [("Chat 1", 1), ("Chat 2", 0)]


def test_chat_session_requires_enrollment(client, seed, room):
    outsider = seed.user("student")

    response = client.post(
        "/api/student/chat-sessions",
        json={"lessonId": room["lesson"]},
        headers={"X-User-Id": str(outsider)},
    )
    assert response.status_code == 403


def test_messages_listed_oldest_first(client, seed, room):
    add_message(seed, room["session"], "assistant", "Second", "2025-03-10T09:00:05.000000Z")
    add_message(seed, room["session"], "user", "First", "2025-03-10T09:00:00.000000Z")

    response = client.get(
        f"/api/student/chat-sessions/{room['session']}/messages",
        headers={"X-User-Id": str(room["student"])},
    )
    assert [m["content"] for m in response.json()] == ["First", "Second"]

    intruder = seed.user("student")
    denied = client.get(
        f"/api/student/chat-sessions/{room['session']}/messages",
        headers={"X-User-Id": str(intruder)},
    )
    assert denied.status_code == 403
    assert denied.json()["code"] == "access_denied"
