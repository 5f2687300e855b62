"""
SQLite-backed job store.

Jobs live in one table, steps in another keyed by (job_id, step_number).
Step payloads are stored as JSON (orjson) so that the schema does not
need to follow every Step field.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import aiosqlite
import orjson

from erjobs.exceptions import JobNotFoundError
from erjobs.logging import get_logger
from erjobs.types import AnalysisDepth, Job, JobStatus, Step

logger = get_logger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS jobs (
        job_id TEXT PRIMARY KEY,
        symbol TEXT NOT NULL,
        company_name TEXT NOT NULL,
        depth TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        error_message TEXT,
        result_json TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_steps (
        job_id TEXT NOT NULL REFERENCES jobs(job_id),
        step_number INTEGER NOT NULL,
        payload TEXT NOT NULL,
        PRIMARY KEY (job_id, step_number)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at)",
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteJobStore:
    """JobStore persisted in a SQLite database file.

    Call ``init()`` before use and ``close()`` when done, or use the store
    as an async context manager.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the connection and create the schema."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        for statement in _SCHEMA:
            await self._db.execute(statement)
        await self._db.commit()
        logger.info("Job store initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SQLiteJobStore:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SQLiteJobStore not initialized. Call init() first.")
        return self._db

    async def create(self, job: Job) -> None:
        db = self._conn()
        await db.execute(
            """
            INSERT INTO jobs (
                job_id, symbol, company_name, depth, status, created_at,
                started_at, completed_at, error_message, result_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.job_id,
                job.symbol,
                job.company_name,
                job.depth.value,
                job.status.value,
                job.created_at.isoformat(),
                _ts(job.started_at),
                _ts(job.completed_at),
                job.error_message,
                job.result_json,
            ),
        )
        for step in job.steps:
            await self._insert_step(db, job.job_id, step)
        await db.commit()
        logger.debug("Job created", job_id=job.job_id, symbol=job.symbol)

    async def get(self, job_id: str) -> Job | None:
        db = self._conn()
        async with db.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        job = self._row_to_job(row)
        job.steps = await self._load_steps(job_id)
        return job

    async def update(self, job: Job) -> None:
        db = self._conn()
        cursor = await db.execute(
            """
            UPDATE jobs
            SET status = ?, started_at = ?, completed_at = ?,
                error_message = ?, result_json = ?
            WHERE job_id = ?
            """,
            (
                job.status.value,
                _ts(job.started_at),
                _ts(job.completed_at),
                job.error_message,
                job.result_json,
                job.job_id,
            ),
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise JobNotFoundError(f"Job not found: {job.job_id}", context={"job_id": job.job_id})

    async def list_pending(self) -> list[Job]:
        db = self._conn()
        async with db.execute(
            "SELECT * FROM jobs WHERE status = ? ORDER BY created_at",
            (JobStatus.PENDING.value,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def append_step(self, job_id: str, step: Step) -> None:
        db = self._conn()
        async with db.execute("SELECT 1 FROM jobs WHERE job_id = ?", (job_id,)) as cursor:
            if await cursor.fetchone() is None:
                raise JobNotFoundError(f"Job not found: {job_id}", context={"job_id": job_id})
        await self._insert_step(db, job_id, step)
        await db.commit()

    async def list_jobs(self, limit: int = 20) -> list[Job]:
        """Most recent jobs first, without steps."""
        db = self._conn()
        async with db.execute(
            "SELECT * FROM jobs ORDER BY created_at DESC LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def _insert_step(self, db: aiosqlite.Connection, job_id: str, step: Step) -> None:
        await db.execute(
            "INSERT INTO job_steps (job_id, step_number, payload) VALUES (?, ?, ?)",
            (job_id, step.step_number, orjson.dumps(step.to_dict()).decode("utf-8")),
        )

    async def _load_steps(self, job_id: str) -> list[Step]:
        db = self._conn()
        async with db.execute(
            "SELECT payload FROM job_steps WHERE job_id = ? ORDER BY step_number",
            (job_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [Step.from_dict(orjson.loads(row["payload"])) for row in rows]

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> Job:
        return Job(
            job_id=row["job_id"],
            symbol=row["symbol"],
            company_name=row["company_name"],
            depth=AnalysisDepth(row["depth"]),
            status=JobStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            error_message=row["error_message"],
            result_json=row["result_json"],
        )
