from fastapi import Request

from tutor.clients import GroqClient
from tutor.config import settings
from tutor.services.summary import SummaryService
from tutor.services.tutor import TutorService
from tutor.services.worker import SummaryWorker

_groq: GroqClient | None = None
_tutor_service: TutorService | None = None


def get_groq_client() -> GroqClient:
    """Process-wide Groq client; the tutor and the summarizer share its HTTP session."""
    global _groq
    if _groq is None:
        _groq = GroqClient()
    return _groq


def build_summary_worker() -> SummaryWorker:
    summarizer = SummaryService(get_groq_client().with_model(settings.summary_model))
    return SummaryWorker(summarizer)


def get_summary_worker(request: Request) -> SummaryWorker:
    return request.app.state.summary_worker


def get_tutor_service() -> TutorService:
    global _tutor_service
    if _tutor_service is None:
        _tutor_service = TutorService(get_groq_client())
    return _tutor_service
