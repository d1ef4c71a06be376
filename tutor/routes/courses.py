import logging

from fastapi import APIRouter, Depends

from tutor.auth import current_teacher
from tutor.database import get_async_conn
from tutor.deps import get_summary_worker
from tutor.errors import ConflictError, NotFoundError
from tutor.models import SummaryStatus, User
from tutor.schemas import CourseCreate, CourseUpdate, LessonCreate, LessonUpdate
from tutor.services.codes import generate_course_code, generate_lesson_code
from tutor.services.worker import SummaryWorker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teacher", tags=["courses"])


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


async def _get_owned_course_or_404(conn, course_id: int, teacher_id: int) -> dict:
    row = await conn.execute(
        "SELECT * FROM courses WHERE id = ? AND teacher_id = ?",
        (course_id, teacher_id),
    )
    course = await row.fetchone()
    if not course:
        raise NotFoundError(f"Course {course_id} not found")
    return dict(course)


async def _get_owned_lesson_or_404(conn, lesson_id: int, teacher_id: int) -> dict:
    row = await conn.execute(
        """SELECT l.* FROM lessons l JOIN courses c ON c.id = l.course_id
           WHERE l.id = ? AND c.teacher_id = ?""",
        (lesson_id, teacher_id),
    )
    lesson = await row.fetchone()
    if not lesson:
        raise NotFoundError(f"Lesson {lesson_id} not found")
    return dict(lesson)


# ------------------------------------------------------------------
# Course endpoints
# ------------------------------------------------------------------


@router.post("/courses", status_code=201)
async def create_course(
    body: CourseCreate, teacher: User = Depends(current_teacher)
) -> dict:
    conn = await get_async_conn()
    try:
        course_code = await generate_course_code(conn)
        cursor = await conn.execute(
            "INSERT INTO courses (name, description, course_code, teacher_id) "
            "VALUES (?, ?, ?, ?)",
            (body.name, body.description, course_code, teacher.id),
        )
        await conn.commit()
        row = await conn.execute(
            "SELECT * FROM courses WHERE id = ?", (cursor.lastrowid,)
        )
        course = dict(await row.fetchone())
        logger.info(f"Teacher {teacher.id} created course {course['id']} ({course_code})")
        return course
    finally:
        await conn.close()


@router.get("/courses")
async def list_courses(teacher: User = Depends(current_teacher)) -> list[dict]:
    conn = await get_async_conn()
    try:
        rows = await conn.execute(
            "SELECT * FROM courses WHERE teacher_id = ? ORDER BY created_at DESC, id DESC",
            (teacher.id,),
        )
        return [dict(row) for row in await rows.fetchall()]
    finally:
        await conn.close()


@router.put("/courses/{course_id}")
async def update_course(
    course_id: int, body: CourseUpdate, teacher: User = Depends(current_teacher)
) -> dict:
    conn = await get_async_conn()
    try:
        course = await _get_owned_course_or_404(conn, course_id, teacher.id)
        fields = body.model_dump(exclude_unset=True)
        if "name" in fields and fields["name"] is None:
            del fields["name"]
        if "description" in fields:
            fields["description"] = fields["description"] or None
        if not fields:
            return course
        assignments = ", ".join(f"{column} = ?" for column in fields)
        await conn.execute(
            f"UPDATE courses SET {assignments} WHERE id = ?",
            (*fields.values(), course_id),
        )
        await conn.commit()
        return await _get_owned_course_or_404(conn, course_id, teacher.id)
    finally:
        await conn.close()


@router.delete("/courses/{course_id}")
async def delete_course(
    course_id: int, teacher: User = Depends(current_teacher)
) -> dict:
    """Delete a course with its lessons, enrollments and chat sessions."""
    conn = await get_async_conn()
    try:
        await _get_owned_course_or_404(conn, course_id, teacher.id)
        row = await conn.execute(
            """SELECT
                 (SELECT COUNT(*) FROM lessons WHERE course_id = ?) AS lessons,
                 (SELECT COUNT(*) FROM enrollments WHERE course_id = ?) AS enrollments""",
            (course_id, course_id),
        )
        counts = dict(await row.fetchone())
        await conn.execute("DELETE FROM courses WHERE id = ?", (course_id,))
        await conn.commit()
        logger.info(f"Teacher {teacher.id} deleted course {course_id} ({counts})")
        return {"success": True, "deleted": counts}
    finally:
        await conn.close()


# ------------------------------------------------------------------
# Lesson endpoints
# ------------------------------------------------------------------


@router.post("/courses/{course_id}/lessons", status_code=201)
async def create_lesson(
    course_id: int, body: LessonCreate, teacher: User = Depends(current_teacher)
) -> dict:
    """Add a lesson by hand. Without a position it goes after the last lesson."""
    summary = body.summary or None
    status = SummaryStatus.COMPLETED if summary else SummaryStatus.NOT_STARTED
    conn = await get_async_conn()
    try:
        await _get_owned_course_or_404(conn, course_id, teacher.id)
        # Code and position are picked under the write lock.
        await conn.execute("BEGIN IMMEDIATE")
        try:
            lesson_code = await generate_lesson_code(conn)
            if body.position is None:
                row = await conn.execute(
                    "SELECT COALESCE(MAX(position) + 1, 0) AS next FROM lessons "
                    "WHERE course_id = ?",
                    (course_id,),
                )
                position = (await row.fetchone())["next"]
            else:
                position = body.position
            cursor = await conn.execute(
                """INSERT INTO lessons
                   (lesson_code, title, raw_transcript, summary, summary_status,
                    position, course_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    lesson_code,
                    body.title,
                    body.raw_transcript,
                    summary,
                    status.value,
                    position,
                    course_id,
                ),
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        logger.info(f"Teacher {teacher.id} created lesson {cursor.lastrowid} ({lesson_code})")
        return await _get_owned_lesson_or_404(conn, cursor.lastrowid, teacher.id)
    finally:
        await conn.close()


@router.get("/courses/{course_id}/lessons")
async def list_lessons(
    course_id: int, teacher: User = Depends(current_teacher)
) -> list[dict]:
    conn = await get_async_conn()
    try:
        await _get_owned_course_or_404(conn, course_id, teacher.id)
        rows = await conn.execute(
            "SELECT * FROM lessons WHERE course_id = ? ORDER BY position, id",
            (course_id,),
        )
        return [dict(row) for row in await rows.fetchall()]
    finally:
        await conn.close()


@router.get("/lessons/{lesson_id}")
async def get_lesson(lesson_id: int, teacher: User = Depends(current_teacher)) -> dict:
    conn = await get_async_conn()
    try:
        return await _get_owned_lesson_or_404(conn, lesson_id, teacher.id)
    finally:
        await conn.close()


@router.put("/lessons/{lesson_id}")
async def update_lesson(
    lesson_id: int, body: LessonUpdate, teacher: User = Depends(current_teacher)
) -> dict:
    """Partial update. Writing a summary by hand marks it completed; clearing it
    resets the lesson to not_started."""
    conn = await get_async_conn()
    try:
        lesson = await _get_owned_lesson_or_404(conn, lesson_id, teacher.id)
        fields = {
            k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None
        }
        if "summary" in fields:
            fields["summary"] = fields["summary"] or None
            fields["summary_status"] = (
                SummaryStatus.COMPLETED.value
                if fields["summary"]
                else SummaryStatus.NOT_STARTED.value
            )
        if not fields:
            return lesson
        assignments = ", ".join(f"{column} = ?" for column in fields)
        await conn.execute(
            f"UPDATE lessons SET {assignments} WHERE id = ?",
            (*fields.values(), lesson_id),
        )
        await conn.commit()
        return await _get_owned_lesson_or_404(conn, lesson_id, teacher.id)
    finally:
        await conn.close()


@router.delete("/lessons/{lesson_id}")
async def delete_lesson(
    lesson_id: int, teacher: User = Depends(current_teacher)
) -> dict:
    """Delete a lesson; its chat sessions and messages go with it."""
    conn = await get_async_conn()
    try:
        await _get_owned_lesson_or_404(conn, lesson_id, teacher.id)
        await conn.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))
        await conn.commit()
        logger.info(f"Teacher {teacher.id} deleted lesson {lesson_id}")
        return {"message": "Lesson deleted successfully"}
    finally:
        await conn.close()


@router.post("/lessons/{lesson_id}/summary", status_code=202)
async def regenerate_summary(
    lesson_id: int,
    teacher: User = Depends(current_teacher),
    worker: SummaryWorker = Depends(get_summary_worker),
) -> dict:
    """Re-queue summary generation for a lesson whose summary failed or never ran."""
    conn = await get_async_conn()
    try:
        lesson = await _get_owned_lesson_or_404(conn, lesson_id, teacher.id)
        if lesson["summary_status"] not in (
            SummaryStatus.FAILED.value,
            SummaryStatus.NOT_STARTED.value,
        ):
            raise ConflictError(
                f"Summary is already {lesson['summary_status']}",
                code="summary_in_progress",
            )
        await conn.execute(
            "UPDATE lessons SET summary_status = ? WHERE id = ?",
            (SummaryStatus.GENERATING.value, lesson_id),
        )
        await conn.commit()
    finally:
        await conn.close()

    worker.enqueue(lesson_id)
    return {
        "lesson_id": lesson_id,
        "summary_status": SummaryStatus.GENERATING.value,
        "message": "Summary is being generated.",
    }
