import sqlite3

from fastapi import APIRouter, Depends

from tutor.auth import current_student
from tutor.database import get_async_conn
from tutor.errors import ConflictError, ForbiddenError, NotFoundError
from tutor.models import User
from tutor.schemas import ChatSessionCreate, ChatSessionRename, EnrollRequest

router = APIRouter(prefix="/api/student", tags=["student"])


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


async def get_enrolled_lesson(conn, lesson_id: int, student_id: int) -> dict:
    """Return the lesson if it exists and the student is enrolled in its course."""
    row = await conn.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,))
    lesson = await row.fetchone()
    if not lesson:
        raise NotFoundError("Lesson not found")
    row = await conn.execute(
        "SELECT 1 FROM enrollments WHERE course_id = ? AND student_id = ?",
        (lesson["course_id"], student_id),
    )
    if not await row.fetchone():
        raise ForbiddenError("Not enrolled in this course")
    return dict(lesson)


async def get_own_chat_session(conn, chat_session_id: int, student_id: int) -> dict:
    row = await conn.execute(
        "SELECT * FROM chat_sessions WHERE id = ?", (chat_session_id,)
    )
    chat_session = await row.fetchone()
    if not chat_session:
        raise NotFoundError("Chat session not found", code="session_not_found")
    if chat_session["student_id"] != student_id:
        raise ForbiddenError("Access denied", code="access_denied")
    return dict(chat_session)


# ------------------------------------------------------------------
# Enrollment
# ------------------------------------------------------------------


@router.post("/enroll", status_code=201)
async def enroll(body: EnrollRequest, student: User = Depends(current_student)) -> dict:
    conn = await get_async_conn()
    try:
        row = await conn.execute(
            "SELECT * FROM courses WHERE course_code = ?", (body.course_code,)
        )
        course = await row.fetchone()
        if not course:
            raise NotFoundError("Invalid course code", code="course_not_found")
        try:
            await conn.execute(
                "INSERT INTO enrollments (course_id, student_id) VALUES (?, ?)",
                (course["id"], student.id),
            )
            await conn.commit()
        except sqlite3.IntegrityError:
            raise ConflictError("Already enrolled in this course", code="already_enrolled")
        return {"course_id": course["id"], "course_name": course["name"]}
    finally:
        await conn.close()


@router.get("/courses")
async def list_enrolled_courses(student: User = Depends(current_student)) -> list[dict]:
    conn = await get_async_conn()
    try:
        rows = await conn.execute(
            """SELECT c.id, c.name, c.description, c.course_code
               FROM courses c JOIN enrollments e ON e.course_id = c.id
               WHERE e.student_id = ? ORDER BY c.name""",
            (student.id,),
        )
        return [dict(row) for row in await rows.fetchall()]
    finally:
        await conn.close()


# ------------------------------------------------------------------
# Chat sessions
# ------------------------------------------------------------------


@router.post("/chat-sessions", status_code=201)
async def create_chat_session(
    body: ChatSessionCreate, student: User = Depends(current_student)
) -> dict:
    conn = await get_async_conn()
    try:
        await get_enrolled_lesson(conn, body.lesson_id, student.id)
        if body.name:
            name = body.name
        else:
            row = await conn.execute(
                "SELECT COUNT(*) AS n FROM chat_sessions WHERE lesson_id = ? AND student_id = ?",
                (body.lesson_id, student.id),
            )
            name = f"Chat {(await row.fetchone())['n'] + 1}"
        cursor = await conn.execute(
            "INSERT INTO chat_sessions (lesson_id, student_id, name) VALUES (?, ?, ?)",
            (body.lesson_id, student.id, name),
        )
        await conn.commit()
        row = await conn.execute(
            "SELECT * FROM chat_sessions WHERE id = ?", (cursor.lastrowid,)
        )
        return dict(await row.fetchone())
    finally:
        await conn.close()


@router.get("/chat-sessions")
async def list_chat_sessions(
    lesson_id: int, student: User = Depends(current_student)
) -> list[dict]:
    conn = await get_async_conn()
    try:
        await get_enrolled_lesson(conn, lesson_id, student.id)
        rows = await conn.execute(
            """SELECT s.*, COUNT(m.id) AS message_count
               FROM chat_sessions s LEFT JOIN messages m ON m.chat_session_id = s.id
               WHERE s.lesson_id = ? AND s.student_id = ?
               GROUP BY s.id ORDER BY s.created_at, s.id""",
            (lesson_id, student.id),
        )
        return [dict(row) for row in await rows.fetchall()]
    finally:
        await conn.close()


@router.get("/chat-sessions/{chat_session_id}/messages")
async def list_messages(
    chat_session_id: int, student: User = Depends(current_student)
) -> list[dict]:
    """Full message history, oldest first. Used by clients to catch up after reconnecting."""
    conn = await get_async_conn()
    try:
        await get_own_chat_session(conn, chat_session_id, student.id)
        rows = await conn.execute(
            "SELECT * FROM messages WHERE chat_session_id = ? ORDER BY created_at, id",
            (chat_session_id,),
        )
        return [dict(row) for row in await rows.fetchall()]
    finally:
        await conn.close()


@router.put("/chat-sessions/{chat_session_id}")
async def rename_chat_session(
    chat_session_id: int, body: ChatSessionRename, student: User = Depends(current_student)
) -> dict:
    conn = await get_async_conn()
    try:
        await get_own_chat_session(conn, chat_session_id, student.id)
        await conn.execute(
            "UPDATE chat_sessions SET name = ? WHERE id = ?", (body.name, chat_session_id)
        )
        await conn.commit()
        return await get_own_chat_session(conn, chat_session_id, student.id)
    finally:
        await conn.close()


@router.delete("/chat-sessions/{chat_session_id}")
async def delete_chat_session(
    chat_session_id: int, student: User = Depends(current_student)
) -> dict:
    """Delete a chat session and all its messages."""
    conn = await get_async_conn()
    try:
        await get_own_chat_session(conn, chat_session_id, student.id)
        await conn.execute("DELETE FROM chat_sessions WHERE id = ?", (chat_session_id,))
        await conn.commit()
        return {"success": True}
    finally:
        await conn.close()
