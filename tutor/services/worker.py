import asyncio
import logging

from tutor.config import settings
from tutor.database import get_async_conn
from tutor.models import SummaryStatus
from tutor.services.summary import SummaryService

logger = logging.getLogger(__name__)


class SummaryWorker:
    """Background queue that fills in lesson summaries.

    Lifecycle is tied to the app lifespan: ``start()`` spawns one consumer
    task on the running event loop, ``stop()`` cancels it. Request handlers
    only call ``enqueue()``, which never blocks and never raises because of
    the summarizer.

    Each job retries the summarizer up to ``max_attempts`` times with a
    linear backoff. A lesson ends up ``completed`` with its summary, or
    ``failed`` once every attempt has failed, the job crashed or the worker
    was stopped mid-job. Failed lessons are not retried automatically; a
    teacher can enqueue them again. Lessons still queued at shutdown stay
    ``generating`` and are re-queued by ``recover()`` on the next start.
    """

    def __init__(
        self,
        summarizer: SummaryService | None = None,
        *,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self.summarizer = summarizer or SummaryService()
        self.max_attempts = max_attempts or settings.summary_max_attempts
        self.retry_delay = (
            settings.summary_retry_delay_seconds if retry_delay is None else retry_delay
        )
        self._queue: asyncio.Queue[int] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="summary-worker")
            logger.info("Summary worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Summary worker stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, lesson_id: int) -> None:
        self._queue.put_nowait(lesson_id)
        logger.info(f"Queued summary generation for lesson {lesson_id}")

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def recover(self) -> list[int]:
        """Re-queue lessons left ``generating`` without a summary.

        Called once at startup: jobs that were queued or running when the
        previous process exited are picked up again.
        """
        conn = await get_async_conn()
        try:
            rows = await conn.execute(
                "SELECT id FROM lessons WHERE summary_status = ? AND summary IS NULL "
                "ORDER BY id",
                (SummaryStatus.GENERATING.value,),
            )
            lesson_ids = [row["id"] for row in await rows.fetchall()]
        finally:
            await conn.close()
        for lesson_id in lesson_ids:
            self.enqueue(lesson_id)
        if lesson_ids:
            logger.info(f"Re-queued {len(lesson_ids)} interrupted summary job(s)")
        return lesson_ids

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            lesson_id = await self._queue.get()
            try:
                await self.run_job(lesson_id)
            except asyncio.CancelledError:
                logger.warning(f"[Summary {lesson_id}] Interrupted by shutdown")
                await self._mark_failed(lesson_id)
                raise
            except Exception as e:
                logger.error(
                    f"[Summary {lesson_id}] Unexpected error: {e}", exc_info=True
                )
                await self._mark_failed(lesson_id)
            finally:
                self._queue.task_done()

    async def run_job(self, lesson_id: int) -> None:
        conn = await get_async_conn()
        try:
            row = await conn.execute(
                "SELECT id, title, raw_transcript, summary FROM lessons WHERE id = ?",
                (lesson_id,),
            )
            lesson = await row.fetchone()
            if not lesson:
                logger.warning(f"[Summary {lesson_id}] Lesson no longer exists, skipping")
                return
            if lesson["summary"]:
                logger.info(f"[Summary {lesson_id}] Lesson already has a summary, skipping")
                await self._set_status(conn, lesson_id, SummaryStatus.COMPLETED)
                return

            summary = await self._summarize_with_retries(
                lesson_id, lesson["title"], lesson["raw_transcript"]
            )
            if summary is None:
                await self._set_status(conn, lesson_id, SummaryStatus.FAILED)
                return

            await conn.execute(
                "UPDATE lessons SET summary = ?, summary_status = ? WHERE id = ?",
                (summary, SummaryStatus.COMPLETED.value, lesson_id),
            )
            await conn.commit()
            logger.info(f"[Summary {lesson_id}] Completed ({len(summary)} chars)")
        finally:
            await conn.close()

    async def _summarize_with_retries(
        self, lesson_id: int, title: str, transcript: str
    ) -> str | None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.summarizer.summarize(title, transcript)
            except Exception as e:
                logger.warning(
                    f"[Summary {lesson_id}] Attempt {attempt}/{self.max_attempts} "
                    f"failed: {e}"
                )
                if attempt < self.max_attempts and self.retry_delay:
                    await asyncio.sleep(self.retry_delay * attempt)
        logger.error(f"[Summary {lesson_id}] All {self.max_attempts} attempts failed")
        return None

    async def _set_status(self, conn, lesson_id: int, status: SummaryStatus) -> None:
        await conn.execute(
            "UPDATE lessons SET summary_status = ? WHERE id = ?",
            (status.value, lesson_id),
        )
        await conn.commit()

    async def _mark_failed(self, lesson_id: int) -> None:
        """Move a lesson whose job died out of ``generating`` so it can be re-queued."""
        conn = await get_async_conn()
        try:
            await conn.execute(
                "UPDATE lessons SET summary_status = ? WHERE id = ? AND summary_status = ?",
                (SummaryStatus.FAILED.value, lesson_id, SummaryStatus.GENERATING.value),
            )
            await conn.commit()
        finally:
            await conn.close()
