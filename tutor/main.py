import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tutor.config import settings
from tutor.database import init_db
from tutor.deps import build_summary_worker
from tutor.errors import register_error_handlers
from tutor.routes import chat, courses, pending, student, transcripts, users

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create SQLite tables and run the summary worker for the app's lifetime."""
    await init_db()
    worker = build_summary_worker()
    app.state.summary_worker = worker
    worker.start()
    await worker.recover()
    logger.info(f"Database ready at {settings.database_path}")
    try:
        yield
    finally:
        await worker.stop()


app = FastAPI(
    title="tutor",
    description="Lesson transcripts, AI summaries and a lesson-grounded AI tutor",
    version="0.1.0",
    lifespan=lifespan,
)

register_error_handlers(app)

# The capture extension posts from arbitrary origins; callers are identified
# by course code (uploads) or X-User-Id, never by cookies.
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.cors_origin_regex,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "Retry-After",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
    ],
)

app.include_router(transcripts.router)
app.include_router(pending.router)
app.include_router(courses.router)
app.include_router(users.router)
app.include_router(student.router)
app.include_router(chat.router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tutor.main:app", host=settings.host, port=settings.port)
