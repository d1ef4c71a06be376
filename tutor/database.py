from datetime import datetime, timezone

import aiosqlite

from tutor.config import settings

CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    role TEXT NOT NULL,
    teacher_code TEXT UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_COURSES = """
CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    course_code TEXT NOT NULL UNIQUE,
    teacher_id INTEGER NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (teacher_id) REFERENCES users(id) ON DELETE CASCADE
)
"""

CREATE_ENROLLMENTS = """
CREATE TABLE IF NOT EXISTS enrollments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL,
    student_id INTEGER NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (course_id) REFERENCES courses(id) ON DELETE CASCADE,
    FOREIGN KEY (student_id) REFERENCES users(id) ON DELETE CASCADE,
    UNIQUE(course_id, student_id)
)
"""

CREATE_PENDING_TRANSCRIPTS = """
CREATE TABLE IF NOT EXISTS pending_transcripts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    teacher_id INTEGER NOT NULL,
    teacher_code TEXT,
    course_code TEXT NOT NULL,
    course_name TEXT NOT NULL,
    lesson_title TEXT NOT NULL,
    raw_transcript TEXT NOT NULL,
    captured_at TEXT NOT NULL,
    metadata TEXT,
    processed INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (teacher_id) REFERENCES users(id) ON DELETE CASCADE
)
"""

CREATE_PENDING_LOOKUP_INDEX = """
CREATE INDEX IF NOT EXISTS idx_pending_lookup
ON pending_transcripts (teacher_id, course_code, processed, captured_at)
"""

CREATE_LESSONS = """
CREATE TABLE IF NOT EXISTS lessons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    lesson_code TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    raw_transcript TEXT NOT NULL,
    summary TEXT,
    summary_status TEXT NOT NULL DEFAULT 'not_started',
    position INTEGER NOT NULL DEFAULT 0,
    course_id INTEGER NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (course_id) REFERENCES courses(id) ON DELETE CASCADE
)
"""

CREATE_CHAT_SESSIONS = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    lesson_id INTEGER NOT NULL,
    student_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (lesson_id) REFERENCES lessons(id) ON DELETE CASCADE,
    FOREIGN KEY (student_id) REFERENCES users(id) ON DELETE CASCADE
)
"""

CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_session_id INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (chat_session_id) REFERENCES chat_sessions(id) ON DELETE CASCADE
)
"""

_DDL = [
    CREATE_USERS,
    CREATE_COURSES,
    CREATE_ENROLLMENTS,
    CREATE_PENDING_TRANSCRIPTS,
    CREATE_PENDING_LOOKUP_INDEX,
    CREATE_LESSONS,
    CREATE_CHAT_SESSIONS,
    CREATE_MESSAGES,
]


async def init_db() -> None:
    """Create all tables. Called once at server startup via FastAPI lifespan."""
    async with aiosqlite.connect(settings.database_path) as db:
        for stmt in _DDL:
            await db.execute(stmt)
        await db.commit()


async def get_async_conn() -> aiosqlite.Connection:
    """Async connection for use in route handlers and background jobs."""
    conn = await aiosqlite.connect(settings.database_path)
    await conn.execute("PRAGMA busy_timeout = 5000")
    await conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = aiosqlite.Row
    return conn


def to_db_timestamp(value: datetime) -> str:
    """Render a datetime as a fixed-width UTC string.

    All timestamps written by the application go through here so that
    SQLite's lexical comparison matches chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
