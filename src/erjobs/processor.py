"""
Background job processor.

Two loops share one unbounded asyncio.Queue of job ids:
- the poll loop lists Pending jobs every ``poll_interval`` seconds and
  enqueues their ids
- the drain loop takes ids off the queue and runs each job through the
  orchestrator

Enqueuing the same id twice is harmless: the drain loop re-reads the job
and skips anything that is no longer Pending. Single process only; there
is no leasing between processor instances.
"""

from __future__ import annotations

import asyncio

from erjobs.cancellation import CancelToken
from erjobs.exceptions import JobCancelledError, JobNotFoundError
from erjobs.jobs.service import JobService
from erjobs.logging import get_logger, log_context
from erjobs.orchestrator import ResearchOrchestrator, StepCallback
from erjobs.types import Job, JobStatus, Step

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


def error_message(exc: BaseException) -> str:
    """Job-level message for ``exc``; never empty."""
    if isinstance(exc, JobCancelledError):
        return exc.message
    if isinstance(exc, asyncio.CancelledError):
        return "Job cancelled: shutdown"
    message = getattr(exc, "message", None) or str(exc)
    return message or type(exc).__name__


class JobProcessor:
    """Polls for Pending jobs and processes them one at a time."""

    def __init__(
        self,
        service: JobService,
        orchestrator: ResearchOrchestrator,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self.service = service
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.processed = 0

    async def run(self, stop: CancelToken) -> None:
        """Run both loops until ``stop`` fires.

        The drain loop finishes the job it is working on before returning;
        that job sees ``stop`` through a child token.
        """
        logger.info("Job processor started", poll_interval=self.poll_interval)
        await asyncio.gather(self._poll_loop(stop), self._drain_loop(stop))
        logger.info("Job processor stopped", processed=self.processed)

    def enqueue(self, job_id: str) -> None:
        self.queue.put_nowait(job_id)

    async def poll_once(self) -> int:
        """Enqueue every Pending job, oldest first.

        Returns:
            Number of ids enqueued.
        """
        pending = await self.service.list_pending()
        for job in pending:
            self.enqueue(job.job_id)
        if pending:
            logger.debug("Enqueued pending jobs", count=len(pending))
        return len(pending)

    async def _poll_loop(self, stop: CancelToken) -> None:
        while not stop.cancelled:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Error polling for pending jobs")
            if await stop.sleep(self.poll_interval):
                break

    async def _drain_loop(self, stop: CancelToken) -> None:
        while not stop.cancelled:
            job_id = await self._next_job_id(stop)
            if job_id is None:
                break
            try:
                await self.process_job(job_id, CancelToken(parent=stop))
            except Exception:
                logger.exception("Error processing job", job_id=job_id)
            finally:
                self.queue.task_done()

    async def _next_job_id(self, stop: CancelToken) -> str | None:
        """Next queued id, or None once ``stop`` fires."""
        if not self.queue.empty():
            return self.queue.get_nowait()

        getter = asyncio.create_task(self.queue.get())
        waiter = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({getter, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not getter.done():
            getter.cancel()
            return None
        job_id = getter.result()
        if stop.cancelled:
            # Stop won the tick; the job stays Pending and queued.
            self.queue.put_nowait(job_id)
            self.queue.task_done()
            return None
        return job_id

    async def process_job(
        self,
        job_id: str,
        cancel: CancelToken | None = None,
        listener: StepCallback | None = None,
    ) -> Job | None:
        """Run one job to a terminal status.

        Each step is appended to the job store, then passed to ``listener``.

        Returns:
            The updated job, or None if it was missing or not Pending.
        """
        cancel = cancel or CancelToken()
        with log_context(job_id=job_id):
            try:
                job = await self.service.get_job(job_id)
            except JobNotFoundError:
                logger.warning("Queued job no longer exists")
                return None

            if job.status is not JobStatus.PENDING:
                logger.debug("Skipping job", status=job.status.value)
                return None

            job = await self.service.mark_started(job)

            async def on_step(step: Step) -> None:
                await self.service.add_step(job_id, step)
                if listener is not None:
                    await listener(step)

            try:
                result = await self.orchestrator.execute(job, on_step=on_step, cancel=cancel)
            except JobCancelledError as e:
                logger.warning("Job cancelled", reason=cancel.reason)
                job = await self.service.mark_failed(job, error_message(e))
            except asyncio.CancelledError as e:
                await asyncio.shield(self.service.mark_failed(job, error_message(e)))
                raise
            except Exception as e:
                job = await self.service.mark_failed(job, error_message(e))
            else:
                job = await self.service.mark_completed(job, result)

            self.processed += 1
            return job
