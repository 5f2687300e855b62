"""
Job store capability and an in-memory implementation.

The store owns Job records. Callers receive copies, change them and hand
them back through ``update``; steps are appended separately so that the
step observer never has to rewrite the whole job.
"""

from __future__ import annotations

import asyncio
import bisect
import copy
from typing import Protocol, runtime_checkable

from erjobs.exceptions import JobNotFoundError
from erjobs.logging import get_logger
from erjobs.types import Job, JobStatus, Step

logger = get_logger(__name__)


@runtime_checkable
class JobStore(Protocol):
    """Persistence for jobs and their steps."""

    async def create(self, job: Job) -> None:
        ...

    async def get(self, job_id: str) -> Job | None:
        ...

    async def update(self, job: Job) -> None:
        """Persist status, timestamps, error and result of ``job``.

        Steps are not written by ``update``; use ``append_step``.
        """
        ...

    async def list_pending(self) -> list[Job]:
        """Pending jobs, oldest first."""
        ...

    async def append_step(self, job_id: str, step: Step) -> None:
        ...

    async def list_jobs(self, limit: int = 20) -> list[Job]:
        """Most recent jobs first."""
        ...


class InMemoryJobStore:
    """Process-local JobStore, used by tests and single-shot CLI runs."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> None:
        async with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job already exists: {job.job_id}")
            self._jobs[job.job_id] = copy.deepcopy(job)
        logger.debug("Job created", job_id=job.job_id, symbol=job.symbol)

    async def get(self, job_id: str) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    async def update(self, job: Job) -> None:
        async with self._lock:
            stored = self._jobs.get(job.job_id)
            if stored is None:
                raise JobNotFoundError(f"Job not found: {job.job_id}", context={"job_id": job.job_id})
            stored.status = job.status
            stored.started_at = job.started_at
            stored.completed_at = job.completed_at
            stored.error_message = job.error_message
            stored.result_json = job.result_json

    async def list_pending(self) -> list[Job]:
        async with self._lock:
            pending = [j for j in self._jobs.values() if j.status is JobStatus.PENDING]
            pending.sort(key=lambda j: j.created_at)
            return [copy.deepcopy(j) for j in pending]

    async def append_step(self, job_id: str, step: Step) -> None:
        async with self._lock:
            stored = self._jobs.get(job_id)
            if stored is None:
                raise JobNotFoundError(f"Job not found: {job_id}", context={"job_id": job_id})
            numbers = [s.step_number for s in stored.steps]
            stored.steps.insert(bisect.bisect_right(numbers, step.step_number), step)

    async def list_jobs(self, limit: int = 20) -> list[Job]:
        """Most recent jobs first."""
        async with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
            return [copy.deepcopy(j) for j in jobs[:limit]]
