"""Job persistence and lifecycle service."""

from erjobs.jobs.service import JobService
from erjobs.jobs.sqlite_store import SQLiteJobStore
from erjobs.jobs.store import InMemoryJobStore, JobStore

__all__ = ["InMemoryJobStore", "JobService", "JobStore", "SQLiteJobStore"]
