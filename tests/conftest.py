import sqlite3

import pytest
from fastapi.testclient import TestClient

from tutor import database
from tutor.config import settings
from tutor.deps import get_summary_worker, get_tutor_service
from tutor.main import app
from tutor.services.rate_limit import transcript_upload_limiter


class FakeSummaryWorker:
    """Stands in for SummaryWorker in route tests; only records what was queued."""

    def __init__(self) -> None:
        self.enqueued: list[int] = []

    def enqueue(self, lesson_id: int) -> None:
        self.enqueued.append(lesson_id)


class FakeTutor:
    def __init__(self) -> None:
        self.reply_text = "Cells are the basic unit of life."
        self.error: Exception | None = None
        self.calls: list[tuple[dict, list[dict], str]] = []

    async def reply(self, lesson: dict, history: list[dict], user_message: str) -> str:
        self.calls.append((lesson, history, user_message))
        if self.error is not None:
            raise self.error
        return self.reply_text


class Seeder:
    """Synchronous helper for inserting fixture rows."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _insert(self, sql: str, params: tuple) -> int:
        cursor = self.conn.execute(sql, params)
        self.conn.commit()
        return cursor.lastrowid

    def user(self, role: str, email: str | None = None, teacher_code: str | None = None) -> int:
        n = self.conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] + 1
        return self._insert(
            "INSERT INTO users (email, name, role, teacher_code) VALUES (?, ?, ?, ?)",
            (email or f"{role}{n}@example.com", f"{role.title()} {n}", role, teacher_code),
        )

    def course(self, teacher_id: int, name: str = "Biology", code: str = "ABC1234") -> int:
        return self._insert(
            "INSERT INTO courses (name, course_code, teacher_id) VALUES (?, ?, ?)",
            (name, code, teacher_id),
        )

    def lesson(
        self,
        course_id: int,
        title: str = "Cells",
        position: int = 0,
        code: str = "LESSON001",
        summary: str | None = None,
        summary_status: str = "completed",
    ) -> int:
        return self._insert(
            """INSERT INTO lessons
               (lesson_code, title, raw_transcript, summary, summary_status, position, course_id)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (code, title, "Today we look at cells.", summary, summary_status, position, course_id),
        )

    def enroll(self, course_id: int, student_id: int) -> int:
        return self._insert(
            "INSERT INTO enrollments (course_id, student_id) VALUES (?, ?)",
            (course_id, student_id),
        )

    def chat_session(self, lesson_id: int, student_id: int, name: str = "Chat 1") -> int:
        return self._insert(
            "INSERT INTO chat_sessions (lesson_id, student_id, name) VALUES (?, ?, ?)",
            (lesson_id, student_id, name),
        )

    def one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self.conn.execute(sql, params).fetchone()

    def all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self.conn.execute(sql, params).fetchall()


@pytest.fixture(autouse=True)
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "tutor-test.db")
    monkeypatch.setattr(settings, "database_path", path)
    transcript_upload_limiter.store.clear()
    return path


@pytest.fixture
def seed(db_path):
    conn = sqlite3.connect(db_path, timeout=5)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    for stmt in database._DDL:
        conn.execute(stmt)
    conn.commit()
    yield Seeder(conn)
    conn.close()


@pytest.fixture
async def conn(seed):
    conn = await database.get_async_conn()
    yield conn
    await conn.close()


@pytest.fixture
def fake_worker():
    return FakeSummaryWorker()


@pytest.fixture
def fake_tutor():
    return FakeTutor()


@pytest.fixture
def client(seed, fake_worker, fake_tutor):
    app.dependency_overrides[get_summary_worker] = lambda: fake_worker
    app.dependency_overrides[get_tutor_service] = lambda: fake_tutor
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
