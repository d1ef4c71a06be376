import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import aiosqlite

from tutor.config import settings
from tutor.database import to_db_timestamp, utcnow
from tutor.errors import NotFoundError
from tutor.models import PendingTranscript
from tutor.schemas import TranscriptUpload

logger = logging.getLogger(__name__)

CONTINUATION_DELIMITER = "\n\n--- Continued ---\n\n"


@dataclass
class IngestResult:
    action: str  # created | appended
    pending_transcript_id: int


def _same_name(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


class IngestionService:
    """Fold transcript submissions into a teacher's pending transcripts.

    A submission continues an existing pending transcript when it has the
    same owning teacher and course code, the same course name and lesson
    title ignoring case, and the existing record is unprocessed and was last
    captured inside the merge window. Otherwise a new record is created.
    Re-sending the same text appends it again.
    """

    def __init__(
        self,
        merge_window: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.merge_window = merge_window or timedelta(hours=settings.merge_window_hours)
        self._clock = clock

    async def ingest(
        self, conn: aiosqlite.Connection, upload: TranscriptUpload
    ) -> IngestResult:
        row = await conn.execute(
            "SELECT id, teacher_id FROM courses WHERE course_code = ?",
            (upload.course_code,),
        )
        course = await row.fetchone()
        if not course:
            raise NotFoundError(
                "Invalid course code - course not found", code="course_not_found"
            )
        teacher_id = course["teacher_id"]

        existing = await self.find_open(conn, teacher_id, upload)
        metadata = (
            json.dumps(upload.metadata.model_dump(exclude_none=True))
            if upload.metadata is not None
            else None
        )
        captured_at = to_db_timestamp(upload.captured_at)

        if existing is not None:
            # Concatenate in SQL so two racing appends both land.
            await conn.execute(
                """UPDATE pending_transcripts
                   SET raw_transcript = raw_transcript || ? || ?,
                       captured_at = ?,
                       metadata = COALESCE(?, metadata)
                   WHERE id = ?""",
                (
                    CONTINUATION_DELIMITER,
                    upload.transcript,
                    captured_at,
                    metadata,
                    existing.id,
                ),
            )
            await conn.commit()
            logger.info(
                f"Appended transcript to pending {existing.id} "
                f"(course {upload.course_code}, lesson '{upload.lesson_title}')"
            )
            return IngestResult(action="appended", pending_transcript_id=existing.id)

        cursor = await conn.execute(
            """INSERT INTO pending_transcripts
               (teacher_id, teacher_code, course_code, course_name, lesson_title,
                raw_transcript, captured_at, metadata, processed)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)""",
            (
                teacher_id,
                upload.teacher_code,
                upload.course_code,
                upload.course_name,
                upload.lesson_title,
                upload.transcript,
                captured_at,
                metadata,
            ),
        )
        await conn.commit()
        logger.info(
            f"Created pending transcript {cursor.lastrowid} "
            f"(course {upload.course_code}, lesson '{upload.lesson_title}')"
        )
        return IngestResult(action="created", pending_transcript_id=cursor.lastrowid)

    async def find_open(
        self, conn: aiosqlite.Connection, teacher_id: int, upload: TranscriptUpload
    ) -> PendingTranscript | None:
        """Most recently captured open pending transcript matching *upload*."""
        cutoff = to_db_timestamp(self._clock() - self.merge_window)
        rows = await conn.execute(
            """SELECT * FROM pending_transcripts
               WHERE teacher_id = ? AND course_code = ? AND processed = 0
                 AND captured_at >= ?
               ORDER BY captured_at DESC, id DESC""",
            (teacher_id, upload.course_code, cutoff),
        )
        for row in await rows.fetchall():
            if _same_name(row["course_name"], upload.course_name) and _same_name(
                row["lesson_title"], upload.lesson_title
            ):
                return PendingTranscript.from_row(row)
        return None
