"""
Job lifecycle service.

Validates new requests and applies status changes. Every change goes
through ``Job.transition_to`` so that a job only ever moves
Pending -> Running -> Completed | Failed.
"""

from __future__ import annotations

import orjson

from erjobs.exceptions import JobNotFoundError, ValidationError
from erjobs.jobs.store import JobStore
from erjobs.logging import get_logger
from erjobs.security.sanitizer import MAX_COMPANY_NAME_LENGTH, is_valid_symbol, sanitize_input
from erjobs.types import AnalysisDepth, AnalysisResult, Job, JobStatus, Step, utc_now

logger = get_logger(__name__)


def parse_depth(depth: str | AnalysisDepth) -> AnalysisDepth:
    if isinstance(depth, AnalysisDepth):
        return depth
    try:
        return AnalysisDepth(str(depth).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid analysis depth: {depth!r}",
            context={"field": "depth", "value": depth},
        ) from None


class JobService:
    """Create jobs and move them through their lifecycle."""

    def __init__(self, store: JobStore) -> None:
        self.store = store

    async def create_job(
        self,
        symbol: str,
        company_name: str,
        depth: str | AnalysisDepth = AnalysisDepth.STANDARD,
    ) -> Job:
        """Validate a research request and store it as a Pending job.

        Raises:
            ValidationError: If symbol, company name or depth is invalid.
        """
        if not is_valid_symbol(symbol):
            raise ValidationError(
                f"Invalid symbol: {symbol!r}",
                context={"field": "symbol", "value": symbol},
            )
        name = sanitize_input(company_name, MAX_COMPANY_NAME_LENGTH)
        if not name:
            raise ValidationError(
                "Company name is required",
                context={"field": "company_name", "value": company_name},
            )

        job = Job.create(symbol.strip().upper(), name, parse_depth(depth))
        await self.store.create(job)
        logger.info("Job submitted", job_id=job.job_id, symbol=job.symbol, depth=job.depth.value)
        return job

    async def get_job(self, job_id: str) -> Job:
        """Raises JobNotFoundError if the job does not exist."""
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}", context={"job_id": job_id})
        return job

    async def list_pending(self) -> list[Job]:
        return await self.store.list_pending()

    async def mark_started(self, job: Job) -> Job:
        job.transition_to(JobStatus.RUNNING)
        job.started_at = utc_now()
        await self.store.update(job)
        return job

    async def mark_completed(self, job: Job, result: AnalysisResult) -> Job:
        job.transition_to(JobStatus.COMPLETED)
        job.completed_at = utc_now()
        job.result_json = orjson.dumps(result.to_dict()).decode("utf-8")
        job.error_message = None
        await self.store.update(job)
        logger.info(
            "Job completed",
            job_id=job.job_id,
            signal=result.signal.value,
            confidence=result.confidence,
        )
        return job

    async def mark_failed(self, job: Job, message: str) -> Job:
        job.transition_to(JobStatus.FAILED)
        job.completed_at = utc_now()
        job.error_message = message or "Unknown error"
        job.result_json = None
        await self.store.update(job)
        logger.warning("Job failed", job_id=job.job_id, error=job.error_message)
        return job

    async def add_step(self, job_id: str, step: Step) -> None:
        await self.store.append_step(job_id, step)
