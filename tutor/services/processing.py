import logging
from typing import Callable

import aiosqlite

from tutor.errors import ConflictError, ForbiddenError, NotFoundError
from tutor.models import Lesson, SummaryStatus
from tutor.services.codes import generate_lesson_code

logger = logging.getLogger(__name__)


class ProcessingService:
    """Turn a teacher-approved pending transcript into a lesson.

    The lesson row and the ``processed`` flag are written in one
    transaction. The flag is flipped with a conditional update, so when two
    calls race on the same pending transcript exactly one creates a lesson
    and the other gets ``already_processed``.

    Summary generation is handed to *enqueue_summary* and never awaited.
    """

    def __init__(self, enqueue_summary: Callable[[int], None]) -> None:
        self._enqueue_summary = enqueue_summary

    async def process(
        self,
        conn: aiosqlite.Connection,
        pending_id: int,
        teacher_id: int,
        course_id: int,
        custom_title: str | None = None,
    ) -> Lesson:
        row = await conn.execute(
            "SELECT * FROM pending_transcripts WHERE id = ?", (pending_id,)
        )
        pending = await row.fetchone()
        if not pending:
            raise NotFoundError("Pending transcript not found")
        if pending["teacher_id"] != teacher_id:
            raise ForbiddenError("You do not have permission to process this transcript")
        if pending["processed"]:
            raise ConflictError(
                "This transcript has already been processed", code="already_processed"
            )

        row = await conn.execute(
            "SELECT id FROM courses WHERE id = ? AND teacher_id = ?",
            (course_id, teacher_id),
        )
        if not await row.fetchone():
            raise NotFoundError("Course not found or access denied")

        title = custom_title or pending["lesson_title"]

        # Take the write lock up front; a racing caller waits here and then
        # sees processed = 1. The lesson code is picked under the same lock so
        # two lessons created at once cannot draw the same free code.
        await conn.execute("BEGIN IMMEDIATE")
        try:
            cursor = await conn.execute(
                "UPDATE pending_transcripts SET processed = 1 "
                "WHERE id = ? AND processed = 0",
                (pending_id,),
            )
            if cursor.rowcount != 1:
                await conn.rollback()
                raise ConflictError(
                    "This transcript has already been processed",
                    code="already_processed",
                )

            lesson_code = await generate_lesson_code(conn)
            cursor = await conn.execute(
                """INSERT INTO lessons
                   (lesson_code, title, raw_transcript, summary, summary_status,
                    position, course_id)
                   VALUES (?, ?, ?, NULL, ?,
                           (SELECT COALESCE(MAX(position) + 1, 0)
                            FROM lessons WHERE course_id = ?),
                           ?)""",
                (
                    lesson_code,
                    title,
                    pending["raw_transcript"],
                    SummaryStatus.GENERATING.value,
                    course_id,
                    course_id,
                ),
            )
            lesson_id = cursor.lastrowid
            await conn.commit()
        except ConflictError:
            raise
        except Exception:
            await conn.rollback()
            raise

        row = await conn.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,))
        lesson = Lesson(**dict(await row.fetchone()))
        logger.info(
            f"Processed pending transcript {pending_id} into lesson {lesson.id} "
            f"({lesson.lesson_code}, course {course_id}, position {lesson.position})"
        )

        self._enqueue_summary(lesson.id)
        return lesson
