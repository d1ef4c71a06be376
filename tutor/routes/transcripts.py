from fastapi import APIRouter, Depends, Response

from tutor.database import get_async_conn
from tutor.schemas import TranscriptUpload
from tutor.services.ingestion import IngestionService
from tutor.services.rate_limit import enforce_transcript_rate_limit

router = APIRouter(prefix="/api", tags=["transcripts"])

ingestion = IngestionService()


@router.post(
    "/transcript/upload",
    dependencies=[Depends(enforce_transcript_rate_limit)],
)
async def upload_transcript(body: TranscriptUpload, response: Response) -> dict:
    """Receive a transcript from the capture client.

    Public (no session); gated by the per-course-code rate limit.
    """
    conn = await get_async_conn()
    try:
        result = await ingestion.ingest(conn, body)
    finally:
        await conn.close()

    if result.action == "appended":
        response.status_code = 200
        message = "Transcript appended to existing pending transcript"
    else:
        response.status_code = 201
        message = "New pending transcript created"
    return {
        "success": True,
        "action": result.action,
        "message": message,
        "pendingTranscriptId": result.pending_transcript_id,
    }
