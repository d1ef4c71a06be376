from fastapi import APIRouter, Depends

from tutor.auth import current_teacher
from tutor.database import get_async_conn
from tutor.deps import get_summary_worker
from tutor.models import PendingTranscript, User
from tutor.schemas import ProcessTranscriptRequest
from tutor.services.processing import ProcessingService
from tutor.services.worker import SummaryWorker

router = APIRouter(prefix="/api/teacher", tags=["pending-transcripts"])


@router.get("/pending-transcripts")
async def list_pending_transcripts(teacher: User = Depends(current_teacher)) -> dict:
    """Unprocessed transcripts for the teacher, most recent capture first.

    Each carries ``suggested_course``: the teacher's course whose name matches
    the submitted course name ignoring case, if any.
    """
    conn = await get_async_conn()
    try:
        rows = await conn.execute(
            "SELECT * FROM pending_transcripts WHERE teacher_id = ? AND processed = 0 "
            "ORDER BY captured_at DESC, id DESC",
            (teacher.id,),
        )
        pending = [PendingTranscript.from_row(row) for row in await rows.fetchall()]

        rows = await conn.execute(
            "SELECT id, name FROM courses WHERE teacher_id = ? ORDER BY id",
            (teacher.id,),
        )
        courses_by_name: dict[str, dict] = {}
        for row in await rows.fetchall():
            courses_by_name.setdefault(row["name"].casefold(), dict(row))
    finally:
        await conn.close()

    items = [
        {
            "id": p.id,
            "course_code": p.course_code,
            "course_name": p.course_name,
            "lesson_title": p.lesson_title,
            "raw_transcript": p.raw_transcript,
            "captured_at": p.captured_at,
            "metadata": p.metadata,
            "created_at": p.created_at,
            "suggested_course": courses_by_name.get(p.course_name.casefold()),
        }
        for p in pending
    ]
    return {"pending_transcripts": items, "count": len(items)}


@router.post("/pending-transcripts/{pending_id}/process", status_code=201)
async def process_pending_transcript(
    pending_id: int,
    body: ProcessTranscriptRequest,
    teacher: User = Depends(current_teacher),
    worker: SummaryWorker = Depends(get_summary_worker),
) -> dict:
    """Create a lesson from a pending transcript; the summary follows in the background."""
    service = ProcessingService(worker.enqueue)
    conn = await get_async_conn()
    try:
        lesson = await service.process(
            conn, pending_id, teacher.id, body.course_id, body.custom_title
        )
    finally:
        await conn.close()

    return {
        "success": True,
        "message": "Lesson created successfully. Summary is being generated.",
        "lesson": {
            "id": lesson.id,
            "title": lesson.title,
            "lesson_code": lesson.lesson_code,
            "course_id": lesson.course_id,
            "position": lesson.position,
            "summary_status": lesson.summary_status,
        },
    }
